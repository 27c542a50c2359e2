import numpy as np
import pandas as pd

from orders.models import ServiceCategory
from providers.models import Provider

# Center around Harare, Zimbabwe
CENTER_LAT = -17.824858
CENTER_LON = 31.053028

REGIONS = ["Harare Central", "Avondale", "Borrowdale", "Mbare", "Highfield", "Chitungwiza"]
PHARMACY_SERVICES = ["Prescription Dispensing", "Home Delivery", "Medication Counselling", "Vaccinations"]
LAB_TESTS = ["Full Blood Count", "Lipid Panel", "HbA1c", "Malaria RDT", "Liver Function", "Urinalysis"]
GRADES = ["A+", "A", "B+", "B", "C+", "C"]


def generate_mock_providers(num_pharmacies=25, num_labs=15, seed=None, output_file=None) -> pd.DataFrame:
    """
    Generates a realistic provider directory: pharmacies and labs scattered
    around the city, with ratings, SLA compliance and capacity drawn from
    plausible distributions. Returns the frame (and writes it when output_file is set).
    """
    rng = np.random.default_rng(seed)
    rows = []

    for category, count, prefix in (
        (ServiceCategory.PHARMACY, num_pharmacies, "PHA"),
        (ServiceCategory.LAB, num_labs, "LAB"),
    ):
        for index in range(count):
            is_pharmacy = category == ServiceCategory.PHARMACY
            offered = PHARMACY_SERVICES if is_pharmacy else LAB_TESTS
            picks = rng.choice(offered, size=rng.integers(2, len(offered) + 1), replace=False)

            # ~10% are new and unrated
            rated = rng.random() > 0.1
            rows.append({
                "provider_id": f"{prefix}-{str(index + 1).zfill(3)}",
                "name": f"{'Pharmacy' if is_pharmacy else 'Lab'} {index + 1}",
                "category": category.value,
                "service_region": rng.choice(REGIONS),
                # roughly +/- 10km
                "lat": np.round(CENTER_LAT + rng.uniform(-0.09, 0.09), 6),
                "lon": np.round(CENTER_LON + rng.uniform(-0.09, 0.09), 6),
                "capabilities": "|".join(sorted(picks)),
                "offers_delivery": bool(is_pharmacy and rng.random() < 0.6),
                "avg_turnaround_hours": None if is_pharmacy else float(rng.choice([6, 12, 24, 48])),
                "average_rating": np.round(rng.uniform(2.5, 5.0), 1) if rated else None,
                "total_ratings": int(rng.integers(5, 400)) if rated else 0,
                "sla_compliance": np.round(rng.uniform(70, 100), 1) if rated else None,
                "quality_grade": rng.choice(GRADES) if rated else None,
                "typical_order_amount": np.round(rng.uniform(15, 60) if is_pharmacy else rng.uniform(30, 120), 2),
                "accepting_new_orders": bool(rng.random() < 0.85),
                "current_capacity": int(rng.integers(0, 8)),
                "max_capacity": 10,
            })

    df = pd.DataFrame(rows)
    if output_file:
        df.to_csv(output_file, index=False)
        print(f"Generated {len(df)} providers and saved to '{output_file}'")
    return df


def _optional(value):
    return None if pd.isna(value) else value


def providers_from_frame(df: pd.DataFrame):
    providers = []
    for row in df.to_dict(orient="records"):
        capabilities = tuple(str(row["capabilities"]).split("|")) if _optional(row["capabilities"]) else ()
        is_pharmacy = row["category"] == ServiceCategory.PHARMACY.value
        providers.append(
            Provider.new(
                row["provider_id"],
                row["name"],
                row["category"],
                service_region=row["service_region"],
                lat=float(row["lat"]),
                lon=float(row["lon"]),
                services_offered=capabilities if is_pharmacy else (),
                tests_offered=() if is_pharmacy else capabilities,
                offers_delivery=bool(row["offers_delivery"]),
                avg_turnaround_hours=_optional(row["avg_turnaround_hours"]),
                average_rating=_optional(row["average_rating"]),
                total_ratings=int(row["total_ratings"]),
                sla_compliance=_optional(row["sla_compliance"]),
                quality_grade=_optional(row["quality_grade"]),
                typical_order_amount=_optional(row["typical_order_amount"]),
                accepting_new_orders=bool(row["accepting_new_orders"]),
                current_capacity=int(row["current_capacity"]),
                max_capacity=int(row["max_capacity"]),
            )
        )
    return providers


if __name__ == "__main__":
    frame = generate_mock_providers(output_file="mock_providers.csv")
    print("\nProviders per region:")
    for region, count in frame["service_region"].value_counts().items():
        print(f"  {region}: {count}")

"""Generate a fake catalog and order history for development.

Writes ``catalog.csv`` and ``orders.csv`` in the layout the service reads
from ``SIGNALRANK_DATA_DIR``. A handful of items get a recent order burst
so the trending signal has something to find, and meals are assembled from
complementary categories so affinity rules emerge.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_catalog, generate_fake_orders
        catalog = generate_fake_catalog(num_items=60)
        orders = generate_fake_orders(catalog, num_orders=500)
"""

import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_CUSTOMERS = 50
DEFAULT_NUM_ITEMS = 60
DEFAULT_NUM_ORDERS = 1000
DEFAULT_DAYS_BACK = 30
DEFAULT_GUEST_SHARE = 0.2
DEFAULT_TRENDING_ITEMS = 3
SECONDS_PER_DAY = 86400

CATEGORIES = {
    "Biryani": ["spicy", "rice", "non-veg"],
    "Curry": ["spicy", "gravy", "veg"],
    "Pizza": ["cheese", "baked", "veg"],
    "Raita": ["cooling", "veg"],
    "Naan": ["bread", "veg"],
    "Beverages": ["drink", "cold"],
    "Desserts": ["sweet", "veg"],
}
MAIN_CATEGORIES = ["Biryani", "Curry", "Pizza"]
SIDES_FOR = {
    "Biryani": ["Raita", "Beverages"],
    "Curry": ["Naan", "Raita"],
    "Pizza": ["Beverages", "Desserts"],
}
STATUSES = ["completed"] * 18 + ["cancelled", "refunded"]


def generate_fake_catalog(
    num_items: int = DEFAULT_NUM_ITEMS, seed: Optional[int] = None
) -> pd.DataFrame:
    """Generate catalog items spread over the food categories.

    Returns:
        DataFrame with columns id, name, category, price, rating,
        rating_count, tags (``|``-separated), preparation_time, popularity,
        is_available and chef (carried as metadata).
    """
    if num_items <= 0:
        raise ValueError("num_items must be positive")

    rng = random.Random(seed)
    categories = list(CATEGORIES)
    rows = []
    for item_id in range(1, num_items + 1):
        category = categories[(item_id - 1) % len(categories)]
        tags = rng.sample(CATEGORIES[category], k=min(2, len(CATEGORIES[category])))
        rows.append(
            {
                "id": str(item_id),
                "name": f"{category} #{item_id}",
                "category": category,
                "price": round(rng.uniform(2.0, 25.0), 2),
                "rating": round(rng.uniform(3.0, 5.0), 1),
                "rating_count": rng.randint(0, 500),
                "tags": "|".join(tags),
                "preparation_time": rng.randint(5, 45),
                "popularity": rng.randint(0, 1000),
                "is_available": rng.random() > 0.05,
                "chef": f"chef-{rng.randint(1, 10)}",
            }
        )
    return pd.DataFrame(rows)


def generate_fake_orders(
    catalog: pd.DataFrame,
    num_customers: int = DEFAULT_NUM_CUSTOMERS,
    num_orders: int = DEFAULT_NUM_ORDERS,
    end_date: Optional[datetime] = None,
    days_back: int = DEFAULT_DAYS_BACK,
    trending_items: int = DEFAULT_TRENDING_ITEMS,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate order lines for ``catalog``.

    Each order has one main dish and usually one or two complementary sides.
    ``trending_items`` main dishes receive extra orders in the last three
    hours.

    Returns:
        DataFrame with columns order_id, customer_id (empty for guests),
        item_id, quantity, created_at and status, sorted by created_at.

    Raises:
        ValueError: If a numeric parameter is non-positive.
    """
    if num_customers <= 0 or num_orders <= 0 or days_back <= 0:
        raise ValueError("num_customers, num_orders and days_back must be positive")

    rng = random.Random(seed)
    end_date = end_date or datetime.utcnow()
    start_date = end_date - timedelta(days=days_back)

    by_category = {
        category: group["id"].astype(str).tolist()
        for category, group in catalog.groupby("category")
    }
    mains = [c for c in MAIN_CATEGORIES if by_category.get(c)]
    if not mains:
        raise ValueError("Catalog has no main-course categories")

    lines = []

    def add_order(order_id: int, created_at: datetime, main_item: Optional[str] = None) -> None:
        customer = None
        if rng.random() > DEFAULT_GUEST_SHARE:
            customer = str(rng.randint(1, num_customers))
        status = rng.choice(STATUSES)

        main_category = rng.choice(mains)
        items = [main_item or rng.choice(by_category[main_category])]
        for side_category in SIDES_FOR[main_category]:
            if by_category.get(side_category) and rng.random() < 0.6:
                items.append(rng.choice(by_category[side_category]))

        for item_id in dict.fromkeys(items):
            lines.append(
                {
                    "order_id": str(order_id),
                    "customer_id": customer,
                    "item_id": item_id,
                    "quantity": rng.randint(1, 3),
                    "created_at": created_at,
                    "status": status,
                }
            )

    span_seconds = int((end_date - start_date).total_seconds())
    for order_id in range(1, num_orders + 1):
        add_order(order_id, start_date + timedelta(seconds=rng.randrange(span_seconds)))

    hot_items = rng.sample(
        [i for c in mains for i in by_category[c]],
        k=min(trending_items, sum(len(by_category[c]) for c in mains)),
    )
    next_id = num_orders + 1
    for item_id in hot_items:
        for _ in range(rng.randint(8, 15)):
            created_at = end_date - timedelta(seconds=rng.randrange(3 * 3600))
            add_order(next_id, created_at, main_item=item_id)
            next_id += 1

    df = pd.DataFrame(lines)
    return df.sort_values("created_at").reset_index(drop=True)


def main() -> None:
    """Generate default data into ``data/`` and print a summary."""
    print(f"Generating {DEFAULT_NUM_ITEMS} items and {DEFAULT_NUM_ORDERS} orders...")

    try:
        catalog = generate_fake_catalog()
        orders = generate_fake_orders(catalog)
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(exist_ok=True)

    catalog.to_csv(data_dir / "catalog.csv", index=False)
    orders.to_csv(data_dir / "orders.csv", index=False)

    print("\nData generated successfully!")
    print(f"Saved to: {data_dir}")
    print("\nData summary:")
    print(f"  Catalog items: {len(catalog)}")
    print(f"  Order lines: {len(orders)}")
    print(f"  Orders: {orders['order_id'].nunique()}")
    print(f"  Customers: {orders['customer_id'].nunique()}")
    print(f"  Date range: {orders['created_at'].min()} to {orders['created_at'].max()}")
    print(f"\nServe it with: SIGNALRANK_DATA_DIR={data_dir} uvicorn src.api.main:app")


if __name__ == "__main__":
    main()

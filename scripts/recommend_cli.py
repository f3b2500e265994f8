"""CLI script for ranking items from CSV data.

Useful for testing and evaluation. Loads ``catalog.csv`` and ``orders.csv``
from a data directory, ranks the catalog for one session and prints the
results with their signal breakdown.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.engine.config import BUSINESS_CONFIGS, EngineSettings
from src.engine.context import build_context
from src.engine.models import RankedRecommendation
from src.engine.orchestrator import create_engine
from src.engine.sampling import BetaSampler
from src.engine.sources import DataFrameOrderHistory, InMemoryCatalog
from src.engine.trending import TIME_WINDOWS

# Setup logging
logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


async def get_recommendations(
    data_dir: str,
    session_id: str,
    customer_id: Optional[str] = None,
    cart_items: Optional[List[str]] = None,
    category: Optional[str] = None,
    business_type: str = "food-delivery",
    limit: int = 10,
    seed: Optional[int] = None,
    diversify: bool = False,
) -> List[RankedRecommendation]:
    """Rank the catalog in ``data_dir`` for one session."""
    catalog = InMemoryCatalog.from_csv(str(Path(data_dir) / "catalog.csv"))
    history = DataFrameOrderHistory.from_csv(str(Path(data_dir) / "orders.csv"))

    engine = create_engine(
        history,
        catalog=catalog,
        settings=EngineSettings(business_type=business_type),
        sampler=BetaSampler(seed=seed),
    )
    context = build_context(
        session_id=session_id,
        customer_id=customer_id,
        cart_items=cart_items,
        category=category,
    )
    return await engine.fetch_and_recommend(catalog, context, limit, diversify=diversify)


async def print_trending(data_dir: str, window: str, limit: int) -> None:
    catalog = InMemoryCatalog.from_csv(str(Path(data_dir) / "catalog.csv"))
    history = DataFrameOrderHistory.from_csv(str(Path(data_dir) / "orders.csv"))
    engine = create_engine(history, catalog=catalog)

    trending = await engine.trending.get_global_trending(limit, TIME_WINDOWS[window])
    print(f"\nTrending ({window}):")
    for item in trending:
        print(
            f"  #{item.rank:<3} {item.item_id:<8} score={item.trending_score:.3f} "
            f"{item.momentum:<8} {item.previous_orders} -> {item.current_orders} "
            f"({item.percent_change:+.0f}%)"
        )


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Rank catalog items for a session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/recommend_cli.py session-1
  python scripts/recommend_cli.py session-1 --customer 7 --cart 12 15
  python scripts/recommend_cli.py session-1 --business-type grocery --explain
  python scripts/recommend_cli.py session-1 --trending last_3_hours
        """,
    )

    parser.add_argument("session_id", help="Session id (drives experiment bucketing)")
    parser.add_argument("--customer", default=None, help="Customer id; omit for anonymous")
    parser.add_argument("--cart", nargs="*", default=[], help="Item ids currently in the cart")
    parser.add_argument("--category", default=None, help="Restrict to one category")
    parser.add_argument(
        "--business-type",
        choices=sorted(BUSINESS_CONFIGS),
        default="food-delivery",
        help="Business vertical whose weights are used (default: food-delivery)",
    )
    parser.add_argument("--limit", type=int, default=10, help="Number of results (default: 10)")
    parser.add_argument(
        "--data-dir", default="data", help="Directory with catalog.csv and orders.csv"
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible sampling")
    parser.add_argument("--diversify", action="store_true", help="Apply diversity re-ranking")
    parser.add_argument("--explain", action="store_true", help="Show signal breakdown")
    parser.add_argument(
        "--trending",
        choices=sorted(TIME_WINDOWS),
        default=None,
        help="Print trending items for a window instead of ranking",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        if args.trending:
            asyncio.run(print_trending(args.data_dir, args.trending, args.limit))
            return

        results = asyncio.run(
            get_recommendations(
                data_dir=args.data_dir,
                session_id=args.session_id,
                customer_id=args.customer,
                cart_items=args.cart,
                category=args.category,
                business_type=args.business_type,
                limit=args.limit,
                seed=args.seed,
                diversify=args.diversify,
            )
        )
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("  Run scripts/generate_fake_data.py first.", file=sys.stderr)
        sys.exit(1)

    print(f"\nRecommendations for session {args.session_id} ({args.business_type}):")
    for rec in results:
        flag = " [explore]" if rec.exploration else ""
        print(f"  #{rec.rank:<3} {rec.item_id:<8} score={rec.score:.3f}{flag}")
        if args.explain:
            s = rec.signals
            print(
                f"        ts={s.thompson_sampling:.3f} trend={s.trending:.3f} "
                f"aff={s.affinity:.3f} collab={s.collaborative:.3f} "
                f"confidence={rec.confidence:.2f} reasons={rec.reasons}"
            )
    print()


if __name__ == "__main__":
    main()

"""Create the LaunchKit Premium product and its monthly price in Stripe test mode.

Run once from the backend directory:
    python -m launchkit.billing.scripts.create_stripe_products

Outputs the price ID to set in .env:
    STRIPE_PREMIUM_PRICE_ID=price_xxx
"""

import asyncio

from launchkit.billing.plans import QUOTA_CONFIG, TIER_PREMIUM
from launchkit.billing.stripe_client import get_stripe_client
from launchkit.config import settings


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = get_stripe_client()
    premium = QUOTA_CONFIG[TIER_PREMIUM]

    product = await client.v1.products.create_async(
        params={
            "name": f"LaunchKit {premium.display_name}",
            "description": f"{premium.monthly_generations} AI generations per month",
            "metadata": {"launchkit_tier": premium.name},
        }
    )
    price = await client.v1.prices.create_async(
        params={
            "product": product.id,
            "unit_amount": premium.price_monthly_cents,
            "currency": "usd",
            "recurring": {"interval": "month"},
        }
    )
    print(f"Created product: {product.name} ({product.id})")
    print(f"  Price: ${premium.price_monthly_cents / 100:.2f}/mo ({price.id})")

    print("\n--- Add this to your .env ---")
    print(f"STRIPE_PREMIUM_PRICE_ID={price.id}")


if __name__ == "__main__":
    asyncio.run(main())

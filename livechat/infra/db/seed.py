from sqlalchemy.ext.asyncio import AsyncSession

from livechat.core.security import generate_api_key, hash_api_key
from livechat.infra.db.models import Customer
from livechat.infra.db.repositories import ApiKeyRepository, CustomerRepository

DEMO_CUSTOMER: dict[str, str] = {
    "name": "Demo Customer",
    "email": "demo@example.com",
    "plan": "pro",
}


async def seed_demo_customer(session: AsyncSession) -> Customer:
    customers = CustomerRepository(session)
    customer = await customers.get_by_email(DEMO_CUSTOMER["email"])
    if customer is None:
        customer = await customers.create(**DEMO_CUSTOMER)
    return customer


async def issue_api_key(
    session: AsyncSession,
    customer: Customer,
    secret: str,
    key_name: str = "default",
) -> str:
    """Store the hash of a fresh key and return the raw key. It cannot be recovered later."""
    raw_key = generate_api_key()
    await ApiKeyRepository(session).create(
        customer_id=customer.id,
        key_name=key_name,
        key_hash=hash_api_key(raw_key, secret),
    )
    return raw_key

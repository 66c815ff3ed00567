import asyncio

from livechat.core.config import get_settings
from livechat.core.db import close_engine, create_schema, get_session_factory, init_engine
from livechat.infra.db.seed import issue_api_key, seed_demo_customer


async def main() -> None:
    settings = get_settings()
    engine = init_engine()
    try:
        if settings.db_auto_create:
            await create_schema(engine)
        session_factory = get_session_factory()
        async with session_factory() as session:
            customer = await seed_demo_customer(session)
            raw_key = await issue_api_key(session, customer, settings.api_key_secret)
            await session.commit()
        print(f"Customer: {customer.id} ({customer.email})")
        print(f"API key:  {raw_key}")
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())

from boxoffice.auth import verify_password
from boxoffice.model.db import SessionAsync
from boxoffice.model.orm import (
    AdminUser,
    ExchangeCode,
    News,
    Performance,
    ROLE_SUPER_ADMIN,
)
from boxoffice.seed import DEMO_EXCHANGE_CODES, seed_demo_data

from conftest import fetch_all, save


async def test_seed_populates_empty_tables(monkeypatch) -> None:
    monkeypatch.setattr("boxoffice.config.ADMIN_EMAIL", "Boss@Example.com")
    monkeypatch.setattr("boxoffice.config.ADMIN_PASSWORD", "pw")

    await seed_demo_data(SessionAsync)

    [admin] = await fetch_all(AdminUser)
    assert admin.email == "boss@example.com"
    assert admin.role == ROLE_SUPER_ADMIN
    assert verify_password("pw", admin.password_hash)
    assert len(await fetch_all(News)) == 3
    codes = {c.code for c in await fetch_all(ExchangeCode)}
    assert codes == {c for c, _ in DEMO_EXCHANGE_CODES}
    perfs = await fetch_all(Performance)
    assert len(perfs) == 3
    assert all(p.is_on_sale() for p in perfs)


async def test_seed_is_rerunnable() -> None:
    await seed_demo_data(SessionAsync)
    await seed_demo_data(SessionAsync)
    assert len(await fetch_all(ExchangeCode)) == len(DEMO_EXCHANGE_CODES)
    assert len(await fetch_all(AdminUser)) == 1


async def test_seed_leaves_existing_rows(exchange_codes) -> None:
    await save(News(title="ours", published_at=0.0))
    await seed_demo_data(SessionAsync)
    assert [n.title for n in await fetch_all(News)] == ["ours"]
    assert len(await fetch_all(ExchangeCode)) == 3

"""API Dependencies"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.billing_service import BillingService
from app.services.billing_settings_service import BillingSettingsService
from app.services.billing_store import SqlAlchemyBillingStore
from app.services.school_directory import SchoolDirectory


def get_billing_store() -> SqlAlchemyBillingStore:
    return SqlAlchemyBillingStore()


def get_school_directory() -> SchoolDirectory:
    return SchoolDirectory()


async def get_billing_service(
    db: AsyncSession = Depends(get_db),
    store: SqlAlchemyBillingStore = Depends(get_billing_store),
    directory: SchoolDirectory = Depends(get_school_directory),
) -> BillingService:
    """
    Billing service configured with the current admin fee defaults.

    Args:
        db: Request session, used only to read billing settings
        store: Billing record store
        directory: School directory

    Returns:
        BillingService ready for one request
    """
    defaults = await BillingSettingsService.get_fee_defaults(db)
    return BillingService(store, directory, defaults)

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidAmount, RecordNotFound, ValidationError
from app.models.billing import BillingSetting
from app.schemas.billing import FeeDefaults

DEFAULT_CURRENCY_KEY = "default_currency"
SETUP_FEE_KEY = "setup_fee"
SUBSCRIPTION_FEE_KEY = "subscription_fee"

# Expected shape of each setting value
SETTING_FIELDS = {
    DEFAULT_CURRENCY_KEY: "code",
    SETUP_FEE_KEY: "amount",
    SUBSCRIPTION_FEE_KEY: "per_student_rate",
}

SETTING_DESCRIPTIONS = {
    DEFAULT_CURRENCY_KEY: "Currency new billing records are issued in",
    SETUP_FEE_KEY: "Flat one-time setup fee per school",
    SUBSCRIPTION_FEE_KEY: "Subscription fee charged per active student",
}


class BillingSettingsService:
    """Admin-editable billing defaults, falling back to environment config"""

    @staticmethod
    async def list_settings(db: AsyncSession) -> List[BillingSetting]:
        result = await db.execute(select(BillingSetting).order_by(BillingSetting.setting_key))
        return list(result.scalars().all())

    @staticmethod
    async def get_setting(db: AsyncSession, key: str) -> Optional[BillingSetting]:
        result = await db.execute(select(BillingSetting).where(BillingSetting.setting_key == key))
        return result.scalar_one_or_none()

    @staticmethod
    def validate_value(key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        if key not in SETTING_FIELDS:
            raise RecordNotFound(f"Unknown billing setting {key!r}")
        field = SETTING_FIELDS[key]
        if field not in value:
            raise ValidationError(f"Setting {key!r} requires field {field!r}")
        if key == DEFAULT_CURRENCY_KEY:
            code = str(value[field]).strip().upper()
            if len(code) != 3 or not code.isalpha():
                raise ValidationError(f"Invalid currency code {value[field]!r}")
            return {field: code}
        try:
            amount = Decimal(str(value[field]))
        except InvalidOperation:
            raise ValidationError(f"Setting {key!r} needs a numeric {field!r}")
        if amount <= 0:
            raise InvalidAmount(f"Setting {key!r} must be positive, got {amount}")
        # JSON has no decimal type; store the exact string
        return {field: str(amount)}

    @staticmethod
    async def update_setting(db: AsyncSession, key: str, value: Dict[str, Any]) -> BillingSetting:
        clean = BillingSettingsService.validate_value(key, value)
        setting = await BillingSettingsService.get_setting(db, key)
        if setting is None:
            setting = BillingSetting(
                setting_key=key,
                setting_value=clean,
                description=SETTING_DESCRIPTIONS[key],
            )
            db.add(setting)
        else:
            setting.setting_value = clean
        await db.commit()
        await db.refresh(setting)
        return setting

    @staticmethod
    async def get_fee_defaults(db: AsyncSession) -> FeeDefaults:
        """Stored settings where present, environment config otherwise."""
        stored = {s.setting_key: s.setting_value for s in await BillingSettingsService.list_settings(db)}

        def pick(key: str, fallback: Any) -> Any:
            value = stored.get(key) or {}
            return value.get(SETTING_FIELDS[key], fallback)

        return FeeDefaults(
            currency=pick(DEFAULT_CURRENCY_KEY, settings.BILLING_DEFAULT_CURRENCY),
            setup_fee_amount=Decimal(str(pick(SETUP_FEE_KEY, settings.BILLING_DEFAULT_SETUP_FEE))),
            per_student_rate=Decimal(str(pick(SUBSCRIPTION_FEE_KEY, settings.BILLING_DEFAULT_PER_STUDENT_RATE))),
        )

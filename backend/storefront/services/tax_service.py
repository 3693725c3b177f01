from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.models.tax_rate import TaxRate
from storefront.utils.log import get_logger

log = get_logger("tax")

ZERO_RATE = Decimal("0")


class TaxServiceException(Exception):
    pass


class TaxService:
    """
    Resolves a sales tax rate for a shipping region.

    resolve() never raises: a missing region, an unknown region or a failed
    lookup all fall back to a zero rate so checkout is never blocked on tax.
    """

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, country: Optional[str], state: Optional[str]) -> Decimal:
        if not country or not state:
            log.debug("Missing location data, using zero tax rate")
            return ZERO_RATE
        try:
            row = (
                self.db.query(TaxRate)
                .filter(
                    TaxRate.country_code == country.strip().upper(),
                    TaxRate.state_code == state.strip().upper(),
                )
                .first()
            )
        except SQLAlchemyError as e:
            log.warning(f"Tax lookup failed for {country}/{state}: {e}")
            self.db.rollback()
            return ZERO_RATE
        if not row:
            log.info(f"Tax rate not found for {country}/{state}")
            return ZERO_RATE
        rate = Decimal(row.rate)
        if rate < 0 or rate > 1:
            log.warning(f"Ignoring out-of-range tax rate {rate} for {country}/{state}")
            return ZERO_RATE
        return rate

    def list_rates(self) -> List[TaxRate]:
        return (
            self.db.query(TaxRate)
            .order_by(TaxRate.country_code, TaxRate.state_code)
            .all()
        )

    def upsert(self, country: str, state: str, rate: Decimal) -> TaxRate:
        rate = Decimal(rate)
        if rate < 0 or rate > 1:
            raise TaxServiceException("Tax rate must be between 0 and 1")
        country, state = country.strip().upper(), state.strip().upper()
        row = (
            self.db.query(TaxRate)
            .filter(TaxRate.country_code == country, TaxRate.state_code == state)
            .first()
        )
        if row:
            row.rate = rate
        else:
            row = TaxRate(country_code=country, state_code=state, rate=rate)
            self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

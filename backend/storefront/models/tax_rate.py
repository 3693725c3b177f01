from sqlalchemy import Column, Integer, Numeric, String, UniqueConstraint

from storefront.db import Base


class TaxRate(Base):
    __tablename__ = "tax_rates"
    __table_args__ = (UniqueConstraint("country_code", "state_code"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    country_code = Column(String(2), nullable=False, index=True)
    state_code = Column(String(8), nullable=False)
    rate = Column(Numeric(6, 5), nullable=False)

from sqlalchemy import Boolean, Column, Integer, String

from storefront.db import Base


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(128), unique=True, index=True, nullable=False)
    name = Column(String(256), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

from sqlalchemy import Column, DateTime, Integer, JSON, Numeric, String
from fleet_inventory.core.db import Base

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(String(36), primary_key=True)
    make = Column(String, nullable=False, index=True)
    model = Column(String, nullable=False)
    year = Column(Integer, nullable=False, index=True)
    license_plate = Column(String, nullable=False)
    plate_key = Column(String, nullable=False, unique=True)  # normalized plate, enforces uniqueness
    # str.lower() copies for search; sqlite lower() only folds ASCII
    make_lower = Column(String, nullable=False, index=True)
    model_lower = Column(String, nullable=False)
    plate_lower = Column(String, nullable=False)
    vin = Column(String, nullable=True)
    mileage = Column(Integer, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    status = Column(String, nullable=False, default="available")  # available | in-use | maintenance | sold
    media_files = Column(JSON, nullable=False, default=list)  # ordered "/uploads/<name>" references
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

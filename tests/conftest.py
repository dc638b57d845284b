import asyncio
import os
from datetime import datetime

import pytest
from mongomock_motor import AsyncMongoMockClient


os.environ.setdefault("LOG_FILE", os.devnull)

from app.core.config import COLLECTION_USERS  # noqa: E402
from app.db import mongodb  # noqa: E402
from app.models.deployment import DeploymentCreate, Location  # noqa: E402
from app.models.vehicle import VehicleCreate  # noqa: E402
from app.services.vehicle_service import register_vehicle_service  # noqa: E402


@pytest.fixture()
def db():
    asyncio.run(mongodb.connect_to_mongo(AsyncMongoMockClient()))
    yield mongodb.db
    mongodb.client = None
    mongodb.db = None


def at(hour, minute=0, day=1):
    return datetime(2030, 1, day, hour, minute)


def seed_user(user_id, role="pilot", is_active=True):
    asyncio.run(mongodb.get_db()[COLLECTION_USERS].insert_one({
        "user_id": user_id,
        "full_name": user_id.replace("_", " ").title(),
        "role": role,
        "is_active": is_active,
        "license_number": f"LIC-{user_id}",
    }))
    return user_id


def register_vehicle(registration="KA01EV0001"):
    vehicle = asyncio.run(register_vehicle_service(VehicleCreate(
        registration_number=registration,
        make="Tata",
        model="Nexon EV",
        year=2023,
        battery_capacity=40.5,
        created_by="admin_1",
    )))
    return vehicle.vehicle_id


def deployment_request(vehicle_id, pilot_id, start, end, **overrides):
    data = dict(
        vehicle_id=vehicle_id,
        pilot_id=pilot_id,
        start_time=start,
        estimated_end_time=end,
        start_location=Location(latitude=12.97, longitude=77.59, address="Hub A"),
        purpose="delivery",
        created_by="dispatcher_1",
    )
    data.update(overrides)
    return DeploymentCreate(**data)


@pytest.fixture()
def vehicle_id(db):
    return register_vehicle()


@pytest.fixture()
def pilot_id(db):
    return seed_user("pilot_p")

"""Shared fixtures: a small local Ray instance and sample records."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
import ray

from access_log_pipeline.utils import AccessLogRecord, hour_bucket


@pytest.fixture(scope="session")
def ray_session():
    """Start a local Ray instance once for every test that needs it."""
    # Workers import the package by name, so they need the project root on their path.
    root = str(Path(__file__).resolve().parent.parent)
    ray.init(
        num_cpus=2,
        include_dashboard=False,
        log_to_driver=False,
        runtime_env={"env_vars": {"PYTHONPATH": root}},
    )
    yield
    ray.shutdown()


def make_record(
    ip: str = "1.2.3.4",
    endpoint: str = "/index.html",
    status: int = 200,
    size: int = 100,
    hour: int = 10,
) -> AccessLogRecord:
    """Build a record directly, bypassing the parser."""
    ts = datetime(2015, 3, 1, hour, 30, 0, tzinfo=timezone.utc)
    return AccessLogRecord(
        ip_address=ip,
        client_identd="-",
        user_id="-",
        date_time=ts,
        date_time_hour=hour_bucket(ts),
        method="GET",
        endpoint=endpoint,
        protocol="HTTP/1.1",
        response_code=status,
        content_size=size,
    )


@pytest.fixture
def sample_records():
    """Twenty records over three IPs, three endpoints and two hours."""
    records = []
    for i in range(20):
        records.append(
            make_record(
                ip=["1.2.3.4", "5.6.7.8", "9.9.9.9"][i % 3],
                endpoint=["/a", "/b", "/c"][i % 2 + (i % 5 == 0)],
                status=[200, 404, 500][i % 3 if i % 4 else 0],
                size=i * 10,
                hour=10 + i % 2,
            )
        )
    return records

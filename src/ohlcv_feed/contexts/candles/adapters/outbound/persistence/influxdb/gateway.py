from __future__ import annotations

from typing import Any, Protocol, Sequence

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS


class InfluxDbGateway(Protocol):
    """
    InfluxDbGateway — thin gateway over the concrete InfluxDB driver.

    Purpose:
    - keep the candle writer independent from the client library
    - unit-test point payloads without a real database
    """

    def write_points(self, points: Sequence[Point]) -> None:
        ...

    def close(self) -> None:
        ...


class InfluxDbClientGateway:
    """
    Gateway backed by `influxdb_client.InfluxDBClient` with a synchronous write API.

    Expectations for client:
    - client.write_api(write_options=SYNCHRONOUS) -> object with .write(bucket=, org=, record=)
    - client.close()
    """

    def __init__(self, client: Any, *, bucket: str, org: str) -> None:
        """
        Bind gateway to one client, bucket and organization.

        Parameters:
        - client: ready `InfluxDBClient` instance.
        - bucket: target bucket.
        - org: target organization.

        Returns:
        - None.

        Assumptions/Invariants:
        - Writes are blocking and run from a worker thread.

        Errors/Exceptions:
        - Raises `ValueError` when client is missing or bucket/org are blank.

        Side effects:
        - Creates the synchronous write API of the client.
        """
        if client is None:  # type: ignore[truthy-bool]
            raise ValueError("InfluxDbClientGateway requires client")
        if not bucket.strip():
            raise ValueError("InfluxDbClientGateway requires non-empty bucket")
        if not org.strip():
            raise ValueError("InfluxDbClientGateway requires non-empty org")
        self._client = client
        self._bucket = bucket.strip()
        self._org = org.strip()
        self._write_api = client.write_api(write_options=SYNCHRONOUS)

    def write_points(self, points: Sequence[Point]) -> None:
        if not points:
            return
        self._write_api.write(bucket=self._bucket, org=self._org, record=list(points))

    def close(self) -> None:
        try:
            self._write_api.close()
        finally:
            self._client.close()


def build_influxdb_client(*, url: str, token: str, org: str, timeout_ms: int) -> InfluxDBClient:
    """
    Create the InfluxDB client used by the candle store.

    Parameters:
    - url: InfluxDB HTTP endpoint.
    - token: API token (may be empty for unauthenticated local instances).
    - org: organization name.
    - timeout_ms: HTTP timeout for every request.

    Returns:
    - Configured `InfluxDBClient`.

    Assumptions/Invariants:
    - The client does not connect until the first request.

    Errors/Exceptions:
    - Propagates client construction errors (for example an invalid url).

    Side effects:
    - Allocates the HTTP connection pool.
    """
    return InfluxDBClient(url=url, token=token, org=org, timeout=timeout_ms)

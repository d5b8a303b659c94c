"""
Tests for upsales.runner module.
"""
import pytest
from dataclasses import replace

import openpyxl

from upsales.config import APIConfig
from upsales.exceptions import ConfigurationError, KeyCRMConnectionError, ValidationError
from upsales.runner import run_compensation


class FakeClient:
    """Stands in for KeyCRMClient; records what it was asked for."""

    instances = []

    def __init__(self, api_config, orders=None, error=None):
        self.api_config = api_config
        self.orders = orders or []
        self.error = error
        self.calls = []
        self.closed = False
        FakeClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    async def fetch_orders(self, date_range=None, convert_to_utc=True):
        self.calls.append((date_range, convert_to_utc))
        if self.error:
            raise self.error
        return self.orders


@pytest.fixture(autouse=True)
def reset_fake_clients():
    FakeClient.instances = []
    yield
    FakeClient.instances = []


def factory(orders=None, error=None):
    return lambda api_config: FakeClient(api_config, orders=orders, error=error)


class TestRunCompensation:
    """Tests for one full batch."""

    @pytest.mark.asyncio
    async def test_writes_workbook(self, app_config, sample_orders, tmp_path):
        output = tmp_path / "november.xlsx"

        result = await run_compensation(
            app_config, output=output, client_factory=factory(sample_orders)
        )

        assert result.path == output
        assert output.exists()
        assert openpyxl.load_workbook(output).sheetnames == [
            "Розрахунок МП 11.2025",
            "Виконання 11.2025",
        ]
        assert result.stats["orders_seen"] == 4

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, app_config, sample_orders, tmp_path):
        result = await run_compensation(
            app_config,
            output=tmp_path / "report.xlsx",
            dry_run=True,
            client_factory=factory(sample_orders),
        )

        assert result.path is None
        assert list(tmp_path.iterdir()) == []
        assert result.report.summary[0].totals == (215.4, 238.2, 261.0)

    @pytest.mark.asyncio
    async def test_period_passed_to_client(self, app_config):
        result = await run_compensation(app_config, dry_run=True, client_factory=factory())

        client, = FakeClient.instances
        date_range, convert_to_utc = client.calls[0]
        assert date_range == result.date_range
        assert convert_to_utc is True
        assert client.api_config is app_config.api
        assert client.closed

    @pytest.mark.asyncio
    async def test_period_override_all(self, app_config):
        result = await run_compensation(app_config, period="all", dry_run=True, client_factory=factory())

        assert result.date_range is None
        assert result.to_dict()["created_between"] is None
        assert result.report.is_empty

    @pytest.mark.asyncio
    async def test_fetch_failure_publishes_nothing(self, app_config, tmp_path):
        output = tmp_path / "report.xlsx"

        with pytest.raises(KeyCRMConnectionError):
            await run_compensation(
                app_config,
                output=output,
                client_factory=factory(error=KeyCRMConnectionError("Connection failed")),
            )

        assert not output.exists()
        assert FakeClient.instances[0].closed

    @pytest.mark.asyncio
    async def test_invalid_period(self, app_config):
        with pytest.raises(ValidationError):
            await run_compensation(app_config, period="yearly", client_factory=factory())
        assert FakeClient.instances == []

    @pytest.mark.asyncio
    async def test_missing_api_key(self, app_config):
        broken = replace(app_config, api=APIConfig(key=""))

        with pytest.raises(ConfigurationError):
            await run_compensation(broken, client_factory=factory())
        assert FakeClient.instances == []

    @pytest.mark.asyncio
    async def test_result_to_dict(self, app_config, sample_orders, tmp_path):
        output = tmp_path / "report.xlsx"
        result = await run_compensation(app_config, output=output, client_factory=factory(sample_orders))

        data = result.to_dict()
        assert data["path"] == str(output)
        assert data["months"] == ["11.2025"]
        assert data["created_between"] == result.date_range.as_filter()

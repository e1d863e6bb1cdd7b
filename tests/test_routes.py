"""API tests for the serving layer, run against an in-memory database."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
import requests
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import timedelta
from app.config import settings
from app.main import app
from app.routers.scrape import get_scraper
from app.schemas.reading import Reading
from app.services.reading_store import ReadingStore
from app.services.scraper import ParkingScraper, ScrapedGarage, ScraperError
from app.utils.timeutils import truncate_to_minute, utcnow


def seed(db, garage_id="south-garage", hours=(1, 2, 3), pct=50.0):
    store = ReadingStore(db)
    now = truncate_to_minute(utcnow())
    for h in hours:
        store.insert_reading(Reading(
            garage_id=garage_id, garage_name=garage_id.title(), address="1 Test St.",
            occupied_percentage=pct + h, timestamp=now - timedelta(hours=h),
        ))


class FakeScraper(ParkingScraper):
    def __init__(self, garages=None, error=None):
        super().__init__(url="https://status.example/garages")
        self.garages = garages or []
        self.error = error

    async def scrape_garage_data(self):
        if self.error:
            raise self.error
        return self.garages


class TestForecastRoutes:
    def test_missing_garage_id(self, client):
        resp = client.get("/api/v1/forecast")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "garage_id parameter is required"

    @pytest.mark.parametrize("minutes", [0, 1441])
    def test_minutes_out_of_range(self, client, minutes):
        resp = client.get("/api/v1/forecast", params={"garage_id": "south-garage", "minutes": minutes})
        assert resp.status_code == 400

    def test_unknown_garage_is_404(self, client):
        resp = client.get("/api/v1/forecast", params={"garage_id": "nowhere", "minutes": 5})
        assert resp.status_code == 404
        assert "nowhere" in resp.json()["detail"]

    def test_forecast(self, client, db):
        seed(db)
        resp = client.get("/api/v1/forecast", params={"garage_id": "south-garage", "minutes": 5})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["forecast_minutes"] == 5
        assert len(body["predictions"]) == 5
        assert body["predictions"][0]["method"] in {
            "seasonal_naive_weekly", "weekday_hourly_average", "hourly_average", "overall_average"}

    def test_batch_forecast_groups_by_garage(self, client, db):
        seed(db, "north-garage")
        seed(db, "south-garage")
        resp = client.post("/api/v1/forecast", json={"minutes": 3})

        assert resp.status_code == 200
        body = resp.json()
        assert body["garages"] == 2
        assert body["total_predictions"] == 6
        assert set(body["predictions_by_garage"]) == {"north-garage", "south-garage"}
        assert body["failed_garages"] == []

    def test_batch_forecast_bounds(self, client):
        assert client.post("/api/v1/forecast", json={"minutes": 2000}).status_code == 400

    def test_non_integer_minutes_is_400(self, client):
        resp = client.get("/api/v1/forecast", params={"garage_id": "south-garage", "minutes": "soon"})
        assert resp.status_code == 400
        assert "minutes" in resp.json()["detail"]

        resp = client.post("/api/v1/forecast", json={"minutes": "soon"})
        assert resp.status_code == 400
        assert "minutes" in resp.json()["detail"]


class TestTrendRoutes:
    def test_days_out_of_range(self, client):
        resp = client.get("/api/v1/trends", params={"garage_id": "south-garage", "days": 31})
        assert resp.status_code == 400

    def test_sparse_garage_is_neutral(self, client):
        resp = client.get("/api/v1/trends", params={"garage_id": "nowhere", "days": 7})

        assert resp.status_code == 200
        body = resp.json()
        assert body["trend_analysis"] == {
            "trend": "stable", "change_percentage": 0.0, "peak_hours": [], "off_peak_hours": []}
        assert body["historical_data"] == []

    def test_trends_with_history(self, client, db):
        seed(db, hours=(1, 5, 9))
        resp = client.get("/api/v1/trends", params={"garage_id": "south-garage", "days": 1})

        assert resp.status_code == 200
        body = resp.json()
        assert body["analysis_period_days"] == 1
        # Three readings in three separate hours; empty hours are not returned
        assert len(body["historical_data"]) == 3
        assert all(b["avg_utilization"] is not None for b in body["historical_data"])

    def test_history(self, client, db):
        seed(db, hours=(1, 2))
        resp = client.get("/api/v1/history", params={"garage_id": "south-garage", "interval": "hourly",
                                                      "hours": 24})
        assert resp.status_code == 200
        assert len(resp.json()["historical_data"]) == 2

    def test_history_bounds(self, client):
        resp = client.get("/api/v1/history", params={"garage_id": "south-garage", "hours": 0})
        assert resp.status_code == 400

    def test_malformed_params_are_400(self, client):
        resp = client.get("/api/v1/trends", params={"garage_id": "south-garage", "days": "week"})
        assert resp.status_code == 400
        assert "days" in resp.json()["detail"]

        resp = client.get("/api/v1/history")
        assert resp.status_code == 400
        assert "garage_id" in resp.json()["detail"]

        resp = client.get("/api/v1/history", params={"garage_id": "south-garage", "interval": "weekly"})
        assert resp.status_code == 400
        assert "interval" in resp.json()["detail"]


class TestGarageRoutes:
    def test_latest_per_garage(self, client, db):
        seed(db, "north-garage", hours=(1, 2))
        seed(db, "south-garage", hours=(3,))
        resp = client.get("/api/v1/garages")

        assert resp.status_code == 200
        garages = resp.json()["garages"]
        assert [g["garage_id"] for g in garages] == ["north-garage", "south-garage"]
        assert garages[0]["occupied_percentage"] == 51.0


class TestScrapeRoutes:
    def teardown_method(self):
        app.dependency_overrides.pop(get_scraper, None)

    def test_scrape_stores_readings(self, client, db):
        app.dependency_overrides[get_scraper] = lambda: FakeScraper([
            ScrapedGarage("south-garage", "South Garage", "377 S. 7th St.", 87.0),
            ScrapedGarage("west-garage", "West Garage", "350 S. 4th St.", 100.0, "Full"),
        ])
        resp = client.post("/api/v1/scrape")

        assert resp.status_code == 200
        assert resp.json()["garages_updated"] == 2
        assert ReadingStore(db).list_distinct_garage_ids() == ["south-garage", "west-garage"]

    def test_scrape_requires_cron_secret(self, client):
        app.dependency_overrides[get_scraper] = lambda: FakeScraper()
        with patch.object(settings, "CRON_SECRET", "s3cret"):
            assert client.post("/api/v1/scrape").status_code == 401
            resp = client.post("/api/v1/scrape", headers={"Authorization": "Bearer s3cret"})
        # Authorised, but the fake page is empty
        assert resp.status_code == 404

    def test_scrape_upstream_failure(self, client):
        app.dependency_overrides[get_scraper] = lambda: FakeScraper(error=ScraperError("Upstream returned HTTP 503"))
        resp = client.post("/api/v1/scrape")
        assert resp.status_code == 502

    def test_scrape_probe_reports_page_time(self, client, db):
        html = (
            '<p class="timestamp">Last updated 2025-8-17 9:01:00 PM</p>'
            '<div class="garage"><h2 class="garage__name">South Garage</h2>'
            '<a class="garage__address" href="#">377 S. 7th St.</a>'
            '<span class="garage__fullness">40 %</span></div>'
        )
        with patch.object(ParkingScraper, "fetch_html", new_callable=AsyncMock, return_value=html):
            resp = client.get("/api/v1/scrape")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["last_updated"] == "2025-08-17T21:01:00"
        # The probe stores nothing
        assert ReadingStore(db).list_distinct_garage_ids() == []


class TestHealthRoute:
    def test_healthy_with_fresh_data(self, client, db):
        ReadingStore(db).insert_reading(Reading(
            garage_id="south-garage", garage_name="South Garage", address="1 Test St.",
            occupied_percentage=40, timestamp=utcnow(),
        ))
        with patch("app.routers.health.requests.get", return_value=MagicMock(status_code=200)):
            body = client.get("/api/v1/health").json()

        assert body["status"] == "healthy"
        assert body["database"] == "ok"
        assert body["data"]["active_garages"] == 1

    def test_degraded_without_data_or_upstream(self, client):
        with patch("app.routers.health.requests.get", side_effect=requests.exceptions.ConnectionError()):
            body = client.get("/api/v1/health").json()

        assert body["status"] == "degraded"
        assert body["upstream"] == "unreachable"
        assert body["data"]["is_fresh"] is False

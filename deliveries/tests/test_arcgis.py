from unittest import mock

import requests
from django.core.cache import cache
from django.test import SimpleTestCase, override_settings

from deliveries import arcgis
from deliveries.arcgis import TOKEN_CACHE_KEY, FeatureLayer, get_token, solve, sql_literal
from deliveries.exceptions import ConfigurationError, ExternalServiceError

CREDENTIALS = {
    "arcgis_client_id": "client",
    "arcgis_client_secret": "secret",
    "timeout_seconds": 3,
}


def json_response(payload):
    response = mock.Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


@override_settings(DELIVERY_TRACKING=CREDENTIALS)
class TokenTests(SimpleTestCase):
    def setUp(self):
        cache.clear()

    @mock.patch("deliveries.arcgis.requests.request")
    def test_token_is_fetched_once_and_cached(self, request):
        request.return_value = json_response({"access_token": "abc", "expires_in": 7200})

        self.assertEqual(get_token(), "abc")
        self.assertEqual(get_token(), "abc")

        request.assert_called_once()
        method, url = request.call_args[0]
        self.assertEqual(method, "post")
        self.assertIn("oauth2/token", url)
        self.assertEqual(request.call_args[1]["data"]["grant_type"], "client_credentials")
        self.assertEqual(request.call_args[1]["timeout"], 3)
        self.assertEqual(cache.get(TOKEN_CACHE_KEY), "abc")

    @mock.patch("deliveries.arcgis.cache")
    @mock.patch("deliveries.arcgis.requests.request")
    def test_token_expires_five_minutes_early(self, request, token_cache):
        token_cache.get.return_value = None
        request.return_value = json_response({"access_token": "abc", "expires_in": 7200})

        get_token()

        token_cache.set.assert_called_once_with(TOKEN_CACHE_KEY, "abc", 6900)

    @mock.patch("deliveries.arcgis.requests.request")
    def test_force_refresh_skips_cache(self, request):
        cache.set(TOKEN_CACHE_KEY, "old", 60)
        request.return_value = json_response({"access_token": "new", "expires_in": 7200})

        self.assertEqual(get_token(force_refresh=True), "new")

    @override_settings(DELIVERY_TRACKING={})
    def test_missing_credentials(self):
        with self.assertRaises(ConfigurationError):
            get_token()

    @mock.patch("deliveries.arcgis.requests.request")
    def test_token_response_without_token(self, request):
        request.return_value = json_response({"expires_in": 7200})
        with self.assertRaises(ExternalServiceError):
            get_token()


@override_settings(DELIVERY_TRACKING=CREDENTIALS)
class FeatureLayerTests(SimpleTestCase):
    def setUp(self):
        self.layer = FeatureLayer("https://example.com/FeatureServer/", 4, token_provider=lambda: "tok")

    def test_url(self):
        self.assertEqual(self.layer.url, "https://example.com/FeatureServer/4")

    def test_requires_service_url(self):
        with self.assertRaises(ConfigurationError):
            FeatureLayer("", 0)

    @mock.patch("deliveries.arcgis.requests.request")
    def test_point_query(self, request):
        request.return_value = json_response({"features": [{"attributes": {"OBJECTID": 3}}]})

        features = self.layer.query(
            where="RouteID = 'r'",
            out_fields="OBJECTID",
            point={"lat": 40.75, "lng": -73.96},
        )

        self.assertEqual(features, [{"attributes": {"OBJECTID": 3}}])
        method, url = request.call_args[0]
        params = request.call_args[1]["params"]
        self.assertEqual((method, url), ("get", "https://example.com/FeatureServer/4/query"))
        self.assertEqual(params["geometry"], "-73.96,40.75")
        self.assertEqual(params["spatialRel"], "esriSpatialRelIntersects")
        self.assertEqual(params["returnGeometry"], "false")
        self.assertEqual(params["token"], "tok")
        self.assertNotIn("orderByFields", params)

    @mock.patch("deliveries.arcgis.requests.request")
    def test_query_without_features(self, request):
        request.return_value = json_response({})
        self.assertEqual(self.layer.query(), [])

    @mock.patch("deliveries.arcgis.requests.request")
    def test_service_error_payload(self, request):
        request.return_value = json_response({"error": {"code": 498, "message": "Invalid token."}})
        with self.assertRaises(ExternalServiceError):
            self.layer.query()

    @mock.patch("deliveries.arcgis.requests.request")
    def test_transport_failure(self, request):
        request.side_effect = requests.exceptions.ConnectionError("down")
        with self.assertLogs("deliveries.arcgis", level="WARNING"):
            with self.assertRaises(ExternalServiceError):
                self.layer.query()

    @mock.patch("deliveries.arcgis.requests.request")
    def test_apply_edits_serializes_features(self, request):
        request.return_value = json_response({"updateResults": [{"objectId": 1, "success": True}]})

        result = self.layer.apply_edits(updates=[{"attributes": {"OBJECTID": 1}}])

        self.assertEqual(arcgis.update_results(result)[0]["objectId"], 1)
        data = request.call_args[1]["data"]
        self.assertEqual(data["updates"], '[{"attributes": {"OBJECTID": 1}}]')
        self.assertNotIn("adds", data)

    @mock.patch("deliveries.arcgis.requests.request")
    def test_solve_encodes_parameters(self, request):
        request.return_value = json_response({"routes": {"features": []}})

        solve("https://solver/Route", {"stops": {"features": []}, "returnStops": True, "outSR": 4326}, token_provider=lambda: "tok")

        self.assertEqual(request.call_args[0][1], "https://solver/Route/solve")
        data = request.call_args[1]["data"]
        self.assertEqual(data["stops"], '{"features": []}')
        self.assertEqual(data["returnStops"], "true")
        self.assertEqual(data["outSR"], 4326)


class SqlLiteralTests(SimpleTestCase):
    def test_quotes_are_escaped(self):
        self.assertEqual(sql_literal("abc"), "'abc'")
        self.assertEqual(sql_literal("O'Brien"), "'O''Brien'")

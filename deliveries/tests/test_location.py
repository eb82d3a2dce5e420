from django.test import SimpleTestCase

from deliveries.exceptions import DriverNotFound, ExternalServiceError, InvalidLocationUpdate
from deliveries.location import LocationUpdater, diff_fences, fence_where_clause, parse_fences

from .fakes import FakeLayer, FakePublisher

DRIVER_ID = "D9A40B40-FD98-4CD0-8DFB-87C4C1D48C19"
ROUTE_ID = "8B460A98-5B83-4797-9929-3DB51EBFE32F"


def driver_record(geofences=None):
    return [{"attributes": {"OBJECTID": 12, "GlobalID": DRIVER_ID, "Name": "Sam", "Geofences": geofences}}]


def fence_records(*object_ids):
    return [{"attributes": {"OBJECTID": object_id}} for object_id in object_ids]


UPDATED = {"addResults": [], "updateResults": [{"objectId": 12, "success": True}]}


class FenceHelperTests(SimpleTestCase):
    def test_diff_keeps_order(self):
        entered, exited = diff_fences(["1", "2", "3"], ["3", "4", "5"])
        self.assertEqual(entered, ["4", "5"])
        self.assertEqual(exited, ["1", "2"])

    def test_parse_fences(self):
        self.assertEqual(parse_fences("1,2"), ["1", "2"])
        self.assertEqual(parse_fences(""), [])
        self.assertEqual(parse_fences(None), [])

    def test_fence_where_clause(self):
        self.assertEqual(fence_where_clause("r"), "RouteID = 'r'")
        self.assertEqual(fence_where_clause("r", 2), "RouteID = 'r' AND Sequence = 2")


class LocationUpdaterTests(SimpleTestCase):
    def setUp(self):
        self.drivers = FakeLayer(features=driver_record("1"), edit_result=UPDATED)
        self.fences = FakeLayer(features=fence_records(1, 2))
        self.publisher = FakePublisher()
        self.updater = LocationUpdater(self.drivers, self.fences, self.publisher)

    def test_requires_driver_and_coordinates(self):
        for message in ({"lat": 1, "lng": 2}, {"driverId": DRIVER_ID, "lng": 2}, {"driverId": DRIVER_ID, "lat": 1}):
            with self.assertRaises(InvalidLocationUpdate):
                self.updater.process(message)
        with self.assertRaises(InvalidLocationUpdate):
            self.updater.process({"driverId": DRIVER_ID, "lat": "north", "lng": 2})
        self.assertEqual(self.publisher.locations, [])

    def test_location_only_update_without_route(self):
        result = self.updater.process({"driverId": DRIVER_ID, "lat": 40.756, "lng": -73.963})

        self.assertEqual(self.publisher.locations, [(DRIVER_ID, 40.756, -73.963, None, None)])
        self.assertEqual(self.fences.queries, [])
        update = self.drivers.edits[0]["updates"][0]
        self.assertEqual(update["geometry"]["x"], -73.963)
        self.assertEqual(update["geometry"]["y"], 40.756)
        self.assertEqual(update["attributes"], {"OBJECTID": 12})
        self.assertEqual(result["arcgisObjectId"], 12)
        self.assertEqual(result["oldFences"], ["1"])

    def test_entering_a_fence_publishes_imminent_delivery(self):
        message = {"driverId": DRIVER_ID, "lat": 40.756, "lng": -73.963, "routeId": ROUTE_ID, "sequence": 1}

        result = self.updater.process(message)

        self.assertEqual(result["enteredFences"], ["2"])
        self.assertEqual(result["exitedFences"], [])
        self.assertEqual(result["currentFences"], ["1", "2"])
        self.assertEqual(self.publisher.imminent, [(DRIVER_ID, ROUTE_ID, 1)])
        self.assertEqual(self.publisher.locations, [(DRIVER_ID, 40.756, -73.963, ROUTE_ID, 1)])
        query = self.fences.queries[0]
        self.assertEqual(query["where"], f"RouteID = '{ROUTE_ID}' AND Sequence = 1")
        self.assertEqual(query["point"], {"lat": 40.756, "lng": -73.963})
        update = self.drivers.edits[0]["updates"][0]
        self.assertEqual(update["attributes"]["Geofences"], "1,2")

    def test_leaving_a_fence_does_not_publish(self):
        self.drivers.features = driver_record("1,2")
        self.fences.features = fence_records(2)

        result = self.updater.process({"driverId": DRIVER_ID, "lat": 1, "lng": 2, "routeId": ROUTE_ID})

        self.assertEqual(result["enteredFences"], [])
        self.assertEqual(result["exitedFences"], ["1"])
        self.assertEqual(self.publisher.imminent, [])
        self.assertEqual(self.drivers.edits[0]["updates"][0]["attributes"]["Geofences"], "2")

    def test_unknown_driver(self):
        self.drivers.features = []
        with self.assertRaises(DriverNotFound):
            self.updater.process({"driverId": DRIVER_ID, "lat": 1, "lng": 2})
        self.assertEqual(self.drivers.edits, [])

    def test_publish_failures_do_not_stop_the_update(self):
        self.updater.publisher = FakePublisher(fail=True)

        with self.assertLogs("deliveries.location", level="WARNING"):
            result = self.updater.process(
                {"driverId": DRIVER_ID, "lat": 1, "lng": 2, "routeId": ROUTE_ID, "sequence": 1}
            )

        self.assertEqual(result["arcgisObjectId"], 12)

    def test_failed_driver_update(self):
        self.drivers.edit_result = {"updateResults": [{"success": False}]}
        with self.assertRaises(ExternalServiceError):
            self.updater.process({"driverId": DRIVER_ID, "lat": 1, "lng": 2})

    def test_missing_update_result(self):
        self.drivers.edit_result = {"addResults": [], "updateResults": []}
        with self.assertRaises(ExternalServiceError):
            self.updater.process({"driverId": DRIVER_ID, "lat": 1, "lng": 2})

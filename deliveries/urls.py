from django.urls import path
from .views import (
    BuildRouteView, LocationUpdateView, SimulationControlView, SimulationView
)

app_name = "deliveries"

urlpatterns = [
    path("api/location/", LocationUpdateView.as_view(), name="location-update"),
    path("api/routes/", BuildRouteView.as_view(), name="build-route"),
    path("api/simulations/<str:driver_id>/", SimulationView.as_view(), name="simulation"),
    path(
        "api/simulations/<str:driver_id>/<str:action>/",
        SimulationControlView.as_view(),
        name="simulation-control",
    ),
]

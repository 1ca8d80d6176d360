from django.urls import path

from .views import WebhookView

app_name = "webhooks"

urlpatterns = [
    path("<str:gateway>/", WebhookView.as_view(), name="receive"),
]

# EOF

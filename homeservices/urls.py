from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    RegisterCustomerView,
    RegisterWorkerView,
    login_view,
    BookingViewSet,
    JobViewSet,
    NotificationViewSet,
    WorkerStatsView,
)

router = DefaultRouter()
router.register(r'bookings', BookingViewSet, basename='booking')
router.register(r'jobs', JobViewSet, basename='job')
router.register(r'notifications', NotificationViewSet, basename='notification')

urlpatterns = [
    path('auth/register/customer/', RegisterCustomerView.as_view(), name='register-customer'),
    path('auth/register/worker/', RegisterWorkerView.as_view(), name='register-worker'),
    path('auth/login/', login_view, name='login'),
    path('workers/me/stats/', WorkerStatsView.as_view(), name='worker-stats'),
    path('', include(router.urls)),
]

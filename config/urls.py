from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    # Django admin
    path('admin/', admin.site.urls),
    path('api/', include('homeservices.urls')),
]

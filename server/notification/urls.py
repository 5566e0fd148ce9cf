from rest_framework.routers import SimpleRouter

from . import views

app_name = 'notification'

router = SimpleRouter()
router.register('', views.NotificationViewSet, basename='notifications')

urlpatterns = router.urls

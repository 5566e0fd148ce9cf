from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from api.serializers import NotificationSerializer
from api.views.common import RecordsViewMixin


class NotificationViewSet(RecordsViewMixin, GenericViewSet):
    """
    The signed-in user's notification center. `?unread=true` keeps only unread ones.
    """
    serializer_class = NotificationSerializer

    def list(self, request, *args, **kwargs):
        unread_only = (self.query_param('unread') or '').lower() in ('1', 'true', 'yes')
        queryset = self.store.list_notifications_by_user(request.user, unread_only=unread_only)
        return self.paginated(queryset, NotificationSerializer)

    @action(detail=True, methods=['POST'])
    def read(self, request, pk=None):
        notification = self.found(self.store.get_notification(pk), 'Notification')
        notification = self.store.mark_notification_read(request.user, notification)
        return Response(NotificationSerializer(notification).data)

    @action(detail=False, methods=['POST'], url_path='read-all')
    def read_all(self, request):
        return Response({'updated': self.store.mark_all_notifications_read(request.user)})

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from main.filter import AnnouncementFilter, PostFilter
from main.models import ADMIN_ROLES, CommentParent

from ..permissions import IsAdministrator, IsStaff
from ..serializers import (
    AnnouncementSerializer,
    CommentCreateSerializer,
    CommentSerializer,
    MessageSerializer,
    PostSerializer,
)
from .common import RecordsViewMixin


class AnnouncementViewSet(RecordsViewMixin, GenericViewSet):
    """
    Active announcements of the caller's school. Non-administrators only see
    notices addressed to everyone or to their own role.
    """
    serializer_class = AnnouncementSerializer

    def get_permissions(self):
        if self.action in ('create', 'destroy', 'deactivate'):
            return [IsAdministrator()]
        return super().get_permissions()

    def get_announcement(self, pk):
        announcement = self.found(self.store.get_announcement(pk), 'Announcement')
        self.same_school(announcement.school_id, 'Announcement')
        return announcement

    def list(self, request, *args, **kwargs):
        school = self.user_school()
        role = None if request.user.role in ADMIN_ROLES else request.user.role
        queryset = self.store.list_announcements_by_school(school, role=role)
        queryset = AnnouncementFilter(request.query_params, queryset=queryset).qs
        return self.paginated(queryset, AnnouncementSerializer)

    def create(self, request, *args, **kwargs):
        announcement = self.store.create_announcement(request.user, request.data)
        return Response(AnnouncementSerializer(announcement).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None):
        self.store.delete_announcement(request.user, self.get_announcement(pk))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['POST'])
    def deactivate(self, request, pk=None):
        announcement = self.store.deactivate_announcement(request.user, self.get_announcement(pk))
        return Response(AnnouncementSerializer(announcement).data)


class MessageViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = MessageSerializer

    def list(self, request, *args, **kwargs):
        return self.paginated(self.store.list_messages_by_user(request.user), MessageSerializer)

    def create(self, request, *args, **kwargs):
        message = self.store.send_message(request.user, request.data)
        return Response(MessageSerializer(message).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['POST'])
    def read(self, request, pk=None):
        message = self.found(self.store.get_message(pk), 'Message')
        message = self.store.mark_message_read(request.user, message)
        return Response(MessageSerializer(message).data)

    @action(detail=False, methods=['GET'])
    def conversation(self, request):
        other = self.found(self.store.get_user(self.query_param('with', required=True)), 'User')
        return self.paginated(self.store.get_conversation(request.user, other), MessageSerializer)


class CommentViewSet(RecordsViewMixin, GenericViewSet):
    """
    Comments hang off an assignment, announcement, grade or post, addressed by
    `parent_type` + `parent_id`.
    """
    serializer_class = CommentSerializer

    def list(self, request, *args, **kwargs):
        parent = CommentParent.of(
            self.query_param('parent_type', required=True),
            self.query_param('parent_id', required=True),
        )
        return self.paginated(self.store.list_comments(request.user, parent), CommentSerializer)

    def create(self, request, *args, **kwargs):
        params = CommentCreateSerializer(data=request.data)
        params.is_valid(raise_exception=True)
        data = params.validated_data
        parent = CommentParent.of(data['parent_type'], data['parent_id'])
        comment = self.store.create_comment(request.user, parent, data['content'])
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None):
        comment = self.found(self.store.get_comment(pk), 'Comment')
        self.store.delete_comment(request.user, comment)
        return Response(status=status.HTTP_204_NO_CONTENT)


class PostViewSet(RecordsViewMixin, GenericViewSet):
    serializer_class = PostSerializer

    def get_permissions(self):
        if self.action == 'create':
            return [IsStaff()]
        return super().get_permissions()

    def list(self, request, *args, **kwargs):
        queryset = self.store.list_posts_by_school(self.user_school())
        queryset = PostFilter(request.query_params, queryset=queryset).qs
        return self.paginated(queryset, PostSerializer)

    def create(self, request, *args, **kwargs):
        post = self.store.create_post(request.user, request.data)
        return Response(PostSerializer(post).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, pk=None):
        post = self.found(self.store.get_post(pk), 'Post')
        self.same_school(post.school_id, 'Post')
        self.store.delete_post(request.user, post)
        return Response(status=status.HTTP_204_NO_CONTENT)

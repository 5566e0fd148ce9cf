from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.utils.functional import cached_property
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from main.records import RecordStore


class StandardResultSetPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = 'page_size'
    max_page_size = 100


class RecordsViewMixin:
    """
    Gives a view one RecordStore bound to the configured alias, plus the small
    lookups every records endpoint repeats.
    """
    pagination_class = StandardResultSetPagination

    @cached_property
    def store(self) -> RecordStore:
        return RecordStore(using=getattr(settings, 'SCHOOL_RECORDS_DB_ALIAS', 'default'))

    @property
    def user(self):
        return self.request.user

    def user_school(self, required=True):
        school = self.store.scopes.resolve_school(self.user)
        if school is None and required:
            raise NotFound('No school is linked to your account.')
        return school

    def found(self, obj, what='Record'):
        """Turn the store's None into a 404."""
        if obj is None:
            raise NotFound(f'{what} not found.')
        return obj

    def same_school(self, school_id, what='Record'):
        if self.user_school().pk != school_id:
            raise PermissionDenied(f'{what} belongs to a different school.')

    def paginated(self, queryset, serializer_class, **kwargs):
        page = self.paginate_queryset(queryset)
        if page is not None:
            serializer = serializer_class(page, many=True, context=self.get_serializer_context(), **kwargs)
            return self.get_paginated_response(serializer.data)
        serializer = serializer_class(queryset, many=True, context=self.get_serializer_context(), **kwargs)
        return Response(serializer.data)

    def query_param(self, name, required=False):
        value = self.request.query_params.get(name) or None
        if value is None and required:
            raise ValidationError({name: 'This query parameter is required.'})
        return value

# filters.py
import django_filters
from django.db.models import Q

from .models import Announcement, Assignment, Grade, Post, Term


class GradeFilter(django_filters.FilterSet):
    """Narrows an already scoped grade listing."""
    term = django_filters.ChoiceFilter(choices=Term.choices)

    class Meta:
        model = Grade
        fields = ['term', 'subject', 'academic_session', 'assessment_type', 'status']


class AssignmentFilter(django_filters.FilterSet):
    due_before = django_filters.IsoDateTimeFilter(field_name='due_date', lookup_expr='lte')
    due_after = django_filters.IsoDateTimeFilter(field_name='due_date', lookup_expr='gte')

    class Meta:
        model = Assignment
        fields = ['subject', 'due_before', 'due_after']


class AnnouncementFilter(django_filters.FilterSet):
    class Meta:
        model = Announcement
        fields = ['priority']


class PostFilter(django_filters.FilterSet):
    q = django_filters.CharFilter(method='filter_by_all', label='Search')

    class Meta:
        model = Post
        fields = ['q', 'category']

    def filter_by_all(self, queryset, name, value):
        return queryset.filter(
            Q(title__icontains=value) |
            Q(content__icontains=value)
        )

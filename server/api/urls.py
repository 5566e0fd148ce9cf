from django.urls import include, path

from rest_framework_nested import routers

from api import views


router = routers.DefaultRouter()
router.register('grades', views.GradeViewSet, basename='grades')
router.register('attendance', views.AttendanceViewSet, basename='attendance')
router.register('report-cards', views.ReportCardViewSet, basename='report-cards')
router.register('announcements', views.AnnouncementViewSet, basename='announcements')
router.register('messages', views.MessageViewSet, basename='messages')
router.register('comments', views.CommentViewSet, basename='comments')
router.register('posts', views.PostViewSet, basename='posts')
router.register('classes', views.SchoolClassViewSet, basename='classes')
router.register('subjects', views.SubjectViewSet, basename='subjects')
router.register('sessions', views.AcademicSessionViewSet, basename='sessions')
router.register('students', views.StudentViewSet, basename='students')
router.register('teachers', views.TeacherViewSet, basename='teachers')
router.register('assignments', views.AssignmentViewSet, basename='assignments')
router.register('fees', views.FeeViewSet, basename='fees')

# Nested Router for a class's timetable
class_router = routers.NestedSimpleRouter(router, 'classes', lookup='school_class')
class_router.register('timetable', views.TimetableViewSet, basename='class-timetable')

urlpatterns = [
    # Main API routes
    path('', include(router.urls)),

    # Dashboard
    path('dashboard/', views.DashboardView.as_view(), name='dashboard'),

    # Nested routes
    path('', include(class_router.urls)),

    # Notification center
    path('notifications/', include('notification.urls')),

    # Include default auth views for the browsable API
    path('api-auth/', include('rest_framework.urls', namespace='rest_framework')),
]

from rest_framework import permissions

from main.models import ADMIN_ROLES, STAFF_ROLES, STUDENT, TEACHER


class HasRole(permissions.BasePermission):
  """
  Allows access only to authenticated users whose role is in `roles`.
  Subclasses set `roles`; `safe_methods_open` lets every signed-in user read.
  """
  roles = ()
  safe_methods_open = False

  def has_permission(self, request, view):
    user = request.user
    if not (user and user.is_authenticated):
      return False
    if self.safe_methods_open and request.method in permissions.SAFE_METHODS:
      return True
    return getattr(user, 'role', None) in self.roles


class IsTeacher(HasRole):
  roles = (TEACHER,)


class IsStudent(HasRole):
  roles = (STUDENT,)


class IsAdministrator(HasRole):
  roles = ADMIN_ROLES


class IsStaff(HasRole):
  roles = STAFF_ROLES


class IsAdministratorOrReadOnly(IsAdministrator):
  safe_methods_open = True


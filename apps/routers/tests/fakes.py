"""
In-memory access controller for reconciler tests.
"""
from apps.routers.services.access_controller import (
    AccessController, AccessControllerError, RemoteUserRecord,
)


class InMemoryAccessController(AccessController):
    """
    Access controller fake keeping users in a dict.

    ``hidden_reads`` makes the next N ``get_user`` calls report a user as
    absent, like a device that has not caught up with a recent write.
    ``fail_for`` lists usernames whose calls raise AccessControllerError.
    """

    def __init__(self):
        self.users = {}
        self.calls = []
        self.hidden_reads = 0
        self.fail_for = set()

    def _check(self, username):
        if username in self.fail_for:
            raise AccessControllerError(f"Router unreachable for {username}")

    def add_user(self, username, enabled=True, profile='DEFAULT'):
        self.users[username] = RemoteUserRecord(username=username, enabled=enabled, profile=profile)

    def get_user(self, username):
        self.calls.append(('get', username))
        self._check(username)
        if self.hidden_reads:
            self.hidden_reads -= 1
            return None
        return self.users.get(username)

    def create_user(self, spec):
        self.calls.append(('create', spec.username))
        self._check(spec.username)
        self.users[spec.username] = RemoteUserRecord(
            username=spec.username,
            enabled=spec.enabled,
            profile=spec.profile,
            comment=spec.comment,
        )
        return True

    def enable_user(self, username):
        self.calls.append(('enable', username))
        self._check(username)
        if username not in self.users:
            return False
        self.users[username].enabled = True
        return True

    def disable_user(self, username):
        self.calls.append(('disable', username))
        self._check(username)
        if username not in self.users:
            return False
        self.users[username].enabled = False
        return True

    def remove_expired_users(self, usernames=None):
        if usernames is None:
            usernames = [name for name, user in self.users.items() if not user.enabled]
        removed = 0
        for username in list(usernames):
            if self.users.pop(username, None) is not None:
                removed += 1
        self.calls.append(('remove', removed))
        return removed

    def actions(self, kind):
        return [name for call, name in self.calls if call == kind]

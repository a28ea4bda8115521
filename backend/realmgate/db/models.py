from realmgate.realms.models import Realm  # noqa: F401
from realmgate.clients.models import Client  # noqa: F401
from realmgate.users.models import User, user_roles  # noqa: F401
from realmgate.roles.models import Role  # noqa: F401
from realmgate.auth.models import Otp, Token  # noqa: F401

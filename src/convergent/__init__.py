"""convergent - A declarative resource lifecycle reconciler for infrastructure-as-code tools."""

from . import resources as resources
from .adapter import ResourceAdapter as ResourceAdapter
from .adapter import get_schema as get_schema
from .adapter import resource as resource
from .context import Context as Context
from .engine import Reconciler as Reconciler
from .engine import Report as Report
from .errors import ReconcileError as ReconcileError
from .errors import RemoteNotFound as RemoteNotFound
from .errors import ResourceError as ResourceError
from .errors import ValidationError as ValidationError
from .plan import Action as Action
from .plan import Plan as Plan
from .schema import Attribute as Attribute
from .schema import AttributeSet as AttributeSet
from .schema import AttrType as AttrType
from .schema import Schema as Schema
from .state import StateRecord as StateRecord
from .state import StateStore as StateStore
from .workspace import DesiredResource as DesiredResource
from .workspace import Workspace as Workspace

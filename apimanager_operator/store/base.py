"""
This defines the base class for all ObjectStore types.
"""

# Standard
import abc

# Local
from ..managed_object import ResourceIdentity


class ObjectStoreBase(abc.ABC):
    """
    Base class for object stores which are responsible for carrying out the
    individual get/create/update calls against the cluster. Every returned
    object is a deep copy that the caller owns exclusively.
    """

    @abc.abstractmethod
    def get(self, identity: ResourceIdentity) -> dict:
        """Fetch the current state of a single object

        Args:
            identity:  ResourceIdentity
                The (kind, namespace, name) key of the object to fetch

        Returns:
            current_state:  dict
                The dict representation of the current object

        Raises:
            NotFoundError: The object does not exist
            TransientStoreError: Network, timeout, or server-side failure
            StoreError: Any other failure
        """

    @abc.abstractmethod
    def create(self, definition: dict) -> dict:
        """Create a new object

        Args:
            definition:  dict
                The full manifest of the object to create

        Returns:
            created:  dict
                The object as stored, including server-assigned metadata

        Raises:
            AlreadyExistsError: An object with the same identity exists
            TransientStoreError: Network, timeout, or server-side failure
            StoreError: Any other failure
        """

    @abc.abstractmethod
    def update(self, definition: dict) -> dict:
        """Replace an existing object. The definition must carry the
        metadata.resourceVersion it was read at.

        Args:
            definition:  dict
                The full manifest of the object to write back

        Returns:
            updated:  dict
                The object as stored, with its new resourceVersion

        Raises:
            ConflictError: The carried resourceVersion is stale
            NotFoundError: The object no longer exists
            TransientStoreError: Network, timeout, or server-side failure
            StoreError: Any other failure
        """

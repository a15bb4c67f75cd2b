"""
Helper object to represent a kubernetes object seen by the operator
"""

KUBE_LIST_IDENTIFIER = "List"


class ManagedObject:  # pylint: disable=too-many-instance-attributes
    """Basic struct to represent a kubernetes object"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid")
        self.resource_version = self.metadata.get("resourceVersion")
        self.labels = self.metadata.get("labels") or {}
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        assert self.kind is not None, "No kind found"
        if KUBE_LIST_IDENTIFIER not in self.kind:
            assert self.name is not None, "No name found"

    @property
    def key(self) -> str:
        """The namespace/name key used to index caches"""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.key}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        return hash(str(self))

    def __eq__(self, other):
        return isinstance(other, ManagedObject) and str(self) == str(other)

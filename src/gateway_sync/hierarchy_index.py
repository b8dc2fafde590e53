"""
Hierarchy-aware domain index.

Domains are stored in a trie keyed by labels in reverse order
(``ads.example.com`` is stored under ``com -> example -> ads``), so that
every ancestor of a domain lies on the path walked to reach it. Membership
of a domain or any of its ancestors is answered in one walk without
rebuilding suffix strings.
"""

from typing import Iterable, Iterator, Optional


def domain_ancestors(domain: str) -> list[str]:
    """
    List a domain and every suffix of it, most specific first.

    >>> domain_ancestors("a.b.example.com")
    ['a.b.example.com', 'b.example.com', 'example.com', 'com']
    """
    labels = domain.split(".")
    return [".".join(labels[i:]) for i in range(len(labels))]


class _Node:
    __slots__ = ("children", "terminal")

    def __init__(self) -> None:
        self.children: dict[str, "_Node"] = {}
        self.terminal = False


class HierarchyIndex:
    """
    Set of domains supporting "is this domain or any ancestor present" queries.

    Insertion may be interleaved with lookups; every query sees all domains
    inserted before it.
    """

    def __init__(self, domains: Optional[Iterable[str]] = None) -> None:
        self._root = _Node()
        self._size = 0
        if domains is not None:
            self.update(domains)

    def insert(self, domain: str) -> bool:
        """
        Add a domain to the index.

        Returns:
            True if the domain was not present before, False otherwise
        """
        node = self._root
        for label in reversed(domain.split(".")):
            child = node.children.get(label)
            if child is None:
                child = node.children[label] = _Node()
            node = child

        if node.terminal:
            return False
        node.terminal = True
        self._size += 1
        return True

    def update(self, domains: Iterable[str]) -> None:
        for domain in domains:
            self.insert(domain)

    def contains(self, domain: str) -> bool:
        """Exact membership."""
        node = self._root
        for label in reversed(domain.split(".")):
            node = node.children.get(label)
            if node is None:
                return False
        return node.terminal

    def contains_self_or_ancestor(self, domain: str) -> bool:
        """True if the domain or any of its ancestors is in the index."""
        return self.longest_match(domain, include_self=True) is not None

    def longest_match(self, domain: str, include_self: bool = True) -> Optional[str]:
        """
        Find the most specific indexed domain among the domain and its ancestors.

        Args:
            domain: Domain to look up
            include_self: Whether the domain itself counts as a match

        Returns:
            The matching domain string, or None if nothing on the path is indexed
        """
        labels = domain.split(".")
        # Walking from the TLD inward, depth d corresponds to the last d labels
        limit = len(labels) if include_self else len(labels) - 1
        node = self._root
        best_depth = 0

        for depth, label in enumerate(reversed(labels[len(labels) - limit:]), start=1):
            node = node.children.get(label)
            if node is None:
                break
            if node.terminal:
                best_depth = depth

        if best_depth == 0:
            return None
        return ".".join(labels[len(labels) - best_depth:])

    def __contains__(self, domain: object) -> bool:
        return isinstance(domain, str) and self.contains(domain)

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[str]:
        stack: list[tuple[_Node, tuple[str, ...]]] = [(self._root, ())]
        while stack:
            node, path = stack.pop()
            if node.terminal:
                yield ".".join(reversed(path))
            for label, child in node.children.items():
                stack.append((child, path + (label,)))

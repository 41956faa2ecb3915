"""
Covenant PSBT - Taproot Output Construction Module

Script trees for the covenant outputs. Every tree is committed under the
protocol NUMS internal key, so outputs are spendable through their script
leaves only. A tree is built from a fixed nested layout (a script or a
two-element list of sub-layouts); the same layout must be used to derive
the address and to produce the control block of a later spend.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from covenant_crypto import (
    NUMS_INTERNAL_KEY_XONLY,
    tagged_hash,
    taproot_tweak_public_key,
    taproot_output_script,
)
from covenant_crypto.exceptions import InvalidKeyError

from ..builder import TapLeafScript
from ..constants import TAPSCRIPT_LEAF_VERSION
from ..exceptions import InvalidScriptError, PSBTConstructionError
from ..utils import varstr


logger = logging.getLogger(__name__)

# A script, or a pair of sub-layouts
TreeLayout = Union[bytes, Sequence['TreeLayout']]


@dataclass(frozen=True)
class TapLeaf:
    """Represents a single leaf in the Taproot script tree."""
    script: bytes
    leaf_version: int = TAPSCRIPT_LEAF_VERSION

    def __post_init__(self):
        """Validate leaf parameters."""
        if not self.script:
            raise InvalidScriptError("Tap leaf script cannot be empty")
        if len(self.script) > 10000:
            raise InvalidScriptError("Tap leaf script too large")
        if self.leaf_version & 0xfe != self.leaf_version:
            raise InvalidScriptError(f"Invalid leaf version: {self.leaf_version:#x}")

    @property
    def leaf_hash(self) -> bytes:
        return tagged_hash("TapLeaf", bytes([self.leaf_version]) + varstr(self.script))


@dataclass(frozen=True)
class TapBranch:
    """Represents a branch in the Taproot script tree."""
    left: Union['TapBranch', TapLeaf]
    right: Union['TapBranch', TapLeaf]

    @property
    def branch_hash(self) -> bytes:
        left_hash = node_hash(self.left)
        right_hash = node_hash(self.right)
        # Children are committed in lexicographic order
        if right_hash < left_hash:
            left_hash, right_hash = right_hash, left_hash
        return tagged_hash("TapBranch", left_hash + right_hash)


TapNode = Union[TapBranch, TapLeaf]


def node_hash(node: TapNode) -> bytes:
    if isinstance(node, TapLeaf):
        return node.leaf_hash
    return node.branch_hash


def build_tree(layout: TreeLayout) -> TapNode:
    """
    Build a script tree from a nested layout.

    Args:
        layout: Script bytes for a leaf, or a two-element sequence of layouts

    Returns:
        Root node of the tree
    """
    if isinstance(layout, (bytes, bytearray)):
        return TapLeaf(bytes(layout))
    if len(layout) != 2:
        raise PSBTConstructionError("Tree branches must have exactly two children")
    return TapBranch(build_tree(layout[0]), build_tree(layout[1]))


class TaprootTree:
    """
    A taproot script tree under a fixed internal key.

    Provides the merkle root, the tweaked output key and scriptPubKey, and
    the control block for spending any of its leaves.
    """

    def __init__(self, layout: TreeLayout, internal_key: bytes = NUMS_INTERNAL_KEY_XONLY):
        """
        Initialize the tree.

        Args:
            layout: Nested tree layout
            internal_key: 32-byte x-only internal key (NUMS by default)
        """
        if len(internal_key) != 32:
            raise PSBTConstructionError("Internal key must be 32 bytes")
        self.root = build_tree(layout)
        self.internal_key = bytes(internal_key)
        self._output_key: Optional[Tuple[bytes, int]] = None

    @property
    def merkle_root(self) -> bytes:
        return node_hash(self.root)

    def _tweak(self) -> Tuple[bytes, int]:
        if self._output_key is None:
            try:
                self._output_key = taproot_tweak_public_key(self.internal_key, self.merkle_root)
            except InvalidKeyError as e:
                raise PSBTConstructionError(f"Failed to derive taproot output key: {e}") from e
            logger.debug(f"Taproot output key {self._output_key[0].hex()} for root {self.merkle_root.hex()}")
        return self._output_key

    @property
    def output_key(self) -> bytes:
        return self._tweak()[0]

    @property
    def output_parity(self) -> int:
        return self._tweak()[1]

    def output_script(self) -> bytes:
        """``OP_1 <output key>`` scriptPubKey of the tree."""
        return taproot_output_script(self.output_key)

    def _merkle_path(self, node: TapNode, leaf: TapLeaf) -> Optional[List[bytes]]:
        """Sibling hashes from ``leaf`` up to ``node``, or None if absent."""
        if isinstance(node, TapLeaf):
            return [] if node == leaf else None
        for child, sibling in ((node.left, node.right), (node.right, node.left)):
            path = self._merkle_path(child, leaf)
            if path is not None:
                return path + [node_hash(sibling)]
        return None

    def control_block(self, script: bytes, leaf_version: int = TAPSCRIPT_LEAF_VERSION) -> bytes:
        """
        Build the control block proving ``script`` is a leaf of this tree.

        Args:
            script: Leaf script
            leaf_version: Leaf version

        Returns:
            ``(leaf_version | parity) || internal key || merkle path``

        Raises:
            PSBTConstructionError: If the script is not a leaf of the tree
        """
        path = self._merkle_path(self.root, TapLeaf(bytes(script), leaf_version))
        if path is None:
            raise PSBTConstructionError("Script is not a leaf of the taproot tree")
        return bytes([leaf_version | self.output_parity]) + self.internal_key + b''.join(path)

    def tap_leaf_script(self, script: bytes) -> TapLeafScript:
        """PSBT tapleaf script entry for spending ``script``."""
        return TapLeafScript(control_block=self.control_block(script), script=bytes(script))

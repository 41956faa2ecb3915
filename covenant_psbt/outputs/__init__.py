"""
Covenant PSBT - Output Construction Modules

This package provides the taproot script trees and P2WSH scripts that
protocol outputs are locked to.
"""

from .taproot import TapLeaf, TapBranch, TaprootTree, build_tree, node_hash
from .p2wsh import create_multisig_script, create_p2wsh_output

__all__ = [
    # Taproot Output Construction
    'TapLeaf',
    'TapBranch',
    'TaprootTree',
    'build_tree',
    'node_hash',
    # P2WSH Output Construction
    'create_multisig_script',
    'create_p2wsh_output',
]

"""
Two-Stage Joint Compressed-Sensing Reconstruction.

This module recovers the readings of every source node of a clustered
wireless sensor network from the network-coded, spatially compressed rows
that reach the sink.

Mathematical Formulation:
------------------------
Given, per measurement sequence:
- K clusters; cluster k has nodes_k source nodes, each sampling an n-length
  signal x_j and sending y_j = Φ_jk·x_j (m_k values)
- Cluster heads compress the node rows Y_k (nodes_k × m_k) into
  Z_k = Φ_k·B_k·Y_k (l_k × m_k), B_k = diag(precoding mask)
- Relays forward linear combinations u = ω·Z of the stacked rows
  Z = [Z_1; ...; Z_K] together with ω

The sink stacks the received rows into U and the coefficient rows into Ω and
solves two sparse recovery problems:

    Stage 1 (spatial):   U[:, c] = Ω·A·Ψ_S·θ_c,    A = diag(Φ_k·B_k)
                         Y = Ψ_S·Θ,  split into the Y_k
    Stage 2 (temporal):  y_j = Φ_jk·Ψ_T·s_j,       x_j = Ψ_T·s_j

where Ψ_S and Ψ_T are optional sparsifying transforms (DCT / DFT) and every
random matrix is regenerated at the sink from its seed.

Modules:
--------
- operators: Linear operators and the compose / block_diag / scale combinators
- random_matrix: Seeded Gaussian / Bernoulli / identity-subsampled matrices
- transforms: Orthonormal DCT and real DFT sparsifying bases
- nc_matrix: Row-growing NC coefficient buffer Ω
- solvers: OMP, BP, AMP, CoSaMP, ROMP, SP, SL0 and EMBP
- streams: Named per-run output streams
- reconstruction: The sink-side engine tying everything together
"""

from .operators import (
    LinearOperator,
    MatrixOperator,
    IdentityOperator,
    DiagonalOperator,
    ProductOperator,
    BlockDiagonalOperator,
    ScaledOperator,
    compose,
    block_diag,
    scale,
    as_operator,
)

from .random_matrix import (
    RANDOM_KINDS,
    preserved_random_state,
    gaussian_matrix,
    bernoulli_matrix,
    identity_matrix,
    make_random_matrix,
    RandomMatrixOperator,
    RecMatrix,
)

from .transforms import (
    TRANSFORM_KINDS,
    DctTransform,
    DftTransform,
    make_transform,
)

from .nc_matrix import (
    NC_COEFF_KINDS,
    NcMatrix,
    NcCoefficientGenerator,
)

from .solvers import (
    DEFAULT_TOLERANCE,
    DEFAULT_MAX_ITER,
    default_sparsity,
    CsAlgorithm,
    Omp,
    BasisPursuit,
    Amp,
    CoSaMP,
    Romp,
    SubspacePursuit,
    SL0,
    Embp,
    SOLVERS,
    make_solver,
)

from .results import (
    RecoveryOk,
    RecoveryErr,
    RunResult,
    DroppedPacket,
    ReconstructionErrorRecord,
    TimingRecord,
    SnrRecord,
    TimeoutRecord,
    SequenceResult,
)

from .streams import stream_key, DataStream, StreamStore

from .reconstruction import (
    EngineState,
    ClusterDescriptor,
    ReconstructionEngine,
    sequence_delta,
)

__all__ = [
    # Operators
    'LinearOperator',
    'MatrixOperator',
    'IdentityOperator',
    'DiagonalOperator',
    'ProductOperator',
    'BlockDiagonalOperator',
    'ScaledOperator',
    'compose',
    'block_diag',
    'scale',
    'as_operator',

    # Random matrices
    'RANDOM_KINDS',
    'preserved_random_state',
    'gaussian_matrix',
    'bernoulli_matrix',
    'identity_matrix',
    'make_random_matrix',
    'RandomMatrixOperator',
    'RecMatrix',

    # Transforms
    'TRANSFORM_KINDS',
    'DctTransform',
    'DftTransform',
    'make_transform',

    # Network coding
    'NC_COEFF_KINDS',
    'NcMatrix',
    'NcCoefficientGenerator',

    # Solvers
    'DEFAULT_TOLERANCE',
    'DEFAULT_MAX_ITER',
    'default_sparsity',
    'CsAlgorithm',
    'Omp',
    'BasisPursuit',
    'Amp',
    'CoSaMP',
    'Romp',
    'SubspacePursuit',
    'SL0',
    'Embp',
    'SOLVERS',
    'make_solver',

    # Results and traces
    'RecoveryOk',
    'RecoveryErr',
    'RunResult',
    'DroppedPacket',
    'ReconstructionErrorRecord',
    'TimingRecord',
    'SnrRecord',
    'TimeoutRecord',
    'SequenceResult',

    # Streams
    'stream_key',
    'DataStream',
    'StreamStore',

    # Engine
    'EngineState',
    'ClusterDescriptor',
    'ReconstructionEngine',
    'sequence_delta',
]

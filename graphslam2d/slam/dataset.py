"""Reading and writing 2D pose-graph files.

The format is the line-oriented, whitespace-separated text grammar read by
GTSAM's ``load2D``. Each line starts with a tag:

    VERTEX2 | VERTEX_SE2 | VERTEX   id x y theta
    VERTEX_XY                       id x y
    EDGE2 | EDGE | EDGE_SE2 | ODOMETRY
                                    id1 id2 dx dy dtheta v1 v2 v3 v4 v5 v6
    BR                              pose_id lm_id bearing range bearing_std range_std
    LANDMARK                        pose_id lm_id lx ly v1 v2 v3
    PRIOR_SE2                       id x y theta sigma_x sigma_y sigma_theta
    HD2                             node_index heading sigma

Unknown tags are ignored. Landmark ids live in their own key space
(``landmark_key(id)``), so landmark 3 and pose 3 are different variables.

The six edge noise values are interpreted according to ``noise_format``:

    graph   TORO layout [v1 v2 v5; v2 v3 v6; v5 v6 v4], covariance
    cov     G2O layout  [v1 v2 v3; v2 v4 v5; v3 v5 v6], covariance
    toro    TORO layout, information
    g2o     G2O layout, information
    auto    graph for a diagonal TORO pattern, cov for a diagonal G2O
            pattern, otherwise the record is rejected

Heading records (``HD2``) are read separately by ``load_heading_file``.
"""

import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import ConstructionError, ParseError
from ..estimators.factor_graph import FactorGraph, Values
from ..estimators.noise_model import DiagonalNoiseModel
from .factors import (
    LandmarkObservation,
    OdometryPose2D,
    OrientationPrior2D,
    PriorPose2D,
    project_landmark,
)
from .types import landmark_key, symbol_chr, symbol_index
from .variables import POINT2, POSE2

VERTEX_TAGS = ("VERTEX2", "VERTEX_SE2", "VERTEX")
LANDMARK_VERTEX_TAGS = ("VERTEX_XY",)
EDGE_TAGS = ("EDGE2", "EDGE", "EDGE_SE2", "ODOMETRY")
HEADING_TAG = "HD2"

NOISE_FORMATS = ("auto", "graph", "cov", "toro", "g2o")

# LANDMARK records with |v1 - v3| below this are treated as isotropic
_ISOTROPIC_TOL = 1e-4

# Minimum number of tokens (tag included) per record type
_MIN_TOKENS = {
    "VERTEX": 5,
    "VERTEX_XY": 4,
    "EDGE": 12,
    "BR": 7,
    "LANDMARK": 8,
    "PRIOR_SE2": 8,
    HEADING_TAG: 4,
}

Record = Tuple[int, List[str]]


@dataclass
class HeadingRecords:
    """
    Heading measurements read from HD2 records.

    Attributes:
        angles: Node index -> heading angle (radians).
        sigma: Shared heading sigma, taken from the record with index 1
            (None if there is no such record).
        count: Largest node index seen (0 if there are no records).
    """

    angles: Dict[int, float] = field(default_factory=dict)
    sigma: Optional[float] = None
    count: int = 0

    def __bool__(self) -> bool:
        return bool(self.angles)


def _read_records(path: str) -> List[Record]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError as exc:
        raise ParseError(f"Cannot open graph file {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ParseError(f"Cannot read graph file {path}: {exc}") from exc

    records = []
    for lineno, line in enumerate(lines, start=1):
        tokens = line.split()
        if not tokens or tokens[0].startswith("#"):
            continue
        records.append((lineno, tokens))
    return records


def _check_length(tokens: List[str], kind: str, lineno: int) -> None:
    if len(tokens) < _MIN_TOKENS[kind]:
        raise ParseError(
            f"line {lineno}: {tokens[0]} record needs {_MIN_TOKENS[kind] - 1} "
            f"fields, got {len(tokens) - 1}"
        )


def _parse_int(token: str, lineno: int) -> int:
    try:
        return int(token)
    except ValueError:
        raise ParseError(f"line {lineno}: expected an integer id, got {token!r}") from None


def _parse_floats(tokens: Sequence[str], lineno: int) -> np.ndarray:
    try:
        values = np.array([float(t) for t in tokens], dtype=np.float64)
    except ValueError as exc:
        raise ParseError(f"line {lineno}: malformed number ({exc})") from None
    if not np.all(np.isfinite(values)):
        raise ParseError(f"line {lineno}: non-finite number in {list(tokens)}")
    return values


def _detect_noise_format(v: np.ndarray, lineno: int) -> str:
    nonzero = v != 0.0
    if nonzero[[0, 2, 3]].all() and not nonzero[[1, 4, 5]].any():
        return "graph"
    if nonzero[[0, 3, 5]].all() and not nonzero[[1, 2, 4]].any():
        return "cov"
    raise ParseError(
        f"line {lineno}: cannot infer the noise format of edge values {v.tolist()}; "
        f"pass noise_format explicitly"
    )


def edge_noise_model(v: np.ndarray, noise_format: str, lineno: int = 0) -> DiagonalNoiseModel:
    """
    Noise model of an edge from its six noise values.

    Args:
        v: The six values v1..v6 of the record.
        noise_format: One of NOISE_FORMATS.
        lineno: Line number used in error messages.

    Raises:
        ParseError: If the format cannot be inferred or the values do not
            describe a valid diagonal noise model.
    """
    if noise_format == "auto":
        noise_format = _detect_noise_format(v, lineno)

    v1, v2, v3, v4, v5, v6 = v
    if noise_format in ("graph", "toro"):
        M = np.array([[v1, v2, v5], [v2, v3, v6], [v5, v6, v4]])
    elif noise_format in ("cov", "g2o"):
        M = np.array([[v1, v2, v3], [v2, v4, v5], [v3, v5, v6]])
    else:
        raise ValueError(f"Unknown noise format {noise_format!r}")

    try:
        if noise_format in ("graph", "cov"):
            return DiagonalNoiseModel.from_covariance(M)
        return DiagonalNoiseModel.from_information(M)
    except ConstructionError as exc:
        raise ParseError(f"line {lineno}: invalid edge noise ({exc})") from exc


def _record_kind(tag: str) -> Optional[str]:
    if tag in VERTEX_TAGS:
        return "VERTEX"
    if tag in LANDMARK_VERTEX_TAGS:
        return "VERTEX_XY"
    if tag in EDGE_TAGS:
        return "EDGE"
    if tag in ("BR", "LANDMARK", "PRIOR_SE2"):
        return tag
    return None


def load_graph_file(path: str, noise_format: str = "auto") -> FactorGraph:
    """
    Parse a pose-graph file into a factor graph.

    Vertices are read before constraints, so the order of records in the
    file does not matter. A landmark that is observed but never declared
    with VERTEX_XY is created at its first sighting, by projecting the
    observation from the observing pose. No anchor prior is added here.

    Args:
        path: Path of the graph file.
        noise_format: How to read the six edge noise values (see module
            docstring).

    Returns:
        FactorGraph with initial values from the file.

    Raises:
        ParseError: If the file cannot be opened, a field is malformed or
            missing, or a record references an undeclared pose.
    """
    if noise_format not in NOISE_FORMATS:
        raise ValueError(f"noise_format must be one of {NOISE_FORMATS}, got {noise_format!r}")

    records = [(lineno, tokens, _record_kind(tokens[0])) for lineno, tokens in _read_records(path)]
    graph = FactorGraph()

    # Pass 1: vertices
    for lineno, tokens, kind in records:
        if kind == "VERTEX":
            _check_length(tokens, kind, lineno)
            key = _parse_int(tokens[1], lineno)
            _add_variable(graph, key, POSE2, _parse_floats(tokens[2:5], lineno), lineno)
        elif kind == "VERTEX_XY":
            _check_length(tokens, kind, lineno)
            index = _parse_int(tokens[1], lineno)
            key = landmark_key(index)
            _add_variable(graph, key, POINT2, _parse_floats(tokens[2:4], lineno), lineno)

    # Pass 2: constraints
    warned_landmark_noise = False
    for lineno, tokens, kind in records:
        if kind is None or kind in ("VERTEX", "VERTEX_XY"):
            continue
        _check_length(tokens, kind, lineno)

        if kind == "EDGE":
            i = _require_pose(graph, _parse_int(tokens[1], lineno), lineno)
            j = _require_pose(graph, _parse_int(tokens[2], lineno), lineno)
            numbers = _parse_floats(tokens[3:12], lineno)
            noise = edge_noise_model(numbers[3:], noise_format, lineno)
            _add_factor(graph, OdometryPose2D, lineno, i, j, numbers[:3], noise)

        elif kind == "PRIOR_SE2":
            key = _require_pose(graph, _parse_int(tokens[1], lineno), lineno)
            numbers = _parse_floats(tokens[2:8], lineno)
            _add_factor(graph, PriorPose2D, lineno, key, numbers[:3], numbers[3:])

        else:
            pose = _require_pose(graph, _parse_int(tokens[1], lineno), lineno)
            landmark = landmark_key(_parse_int(tokens[2], lineno))
            if kind == "BR":
                bearing, range_, bearing_std, range_std = _parse_floats(tokens[3:7], lineno)
            else:
                lx, ly, v1, _, v3 = _parse_floats(tokens[3:8], lineno)
                bearing, range_ = np.arctan2(ly, lx), np.hypot(lx, ly)
                if abs(v1 - v3) < _ISOTROPIC_TOL:
                    bearing_std, range_std = np.sqrt(v1 / 10.0), np.sqrt(v1)
                else:
                    bearing_std, range_std = 1.0, 1.0
                    if not warned_landmark_noise:
                        warnings.warn(
                            f"line {lineno}: LANDMARK noise is not isotropic; "
                            f"using unit bearing and range sigmas",
                            RuntimeWarning,
                        )
                        warned_landmark_noise = True

            if not graph.has_variable(landmark):
                initial = project_landmark(graph.variable(pose).value, bearing, range_)
                _add_variable(graph, landmark, POINT2, initial, lineno)
            _add_factor(
                graph,
                LandmarkObservation,
                lineno,
                pose,
                landmark,
                [bearing, range_],
                [bearing_std, range_std],
            )

    return graph


def _add_variable(graph, key, var_type, value, lineno):
    try:
        graph.add_variable(key, var_type, value)
    except ConstructionError as exc:
        raise ParseError(f"line {lineno}: {exc}") from exc


def _add_factor(graph, factor_class, lineno, *args):
    try:
        graph.add_factor(factor_class(*args))
    except ConstructionError as exc:
        raise ParseError(f"line {lineno}: {exc}") from exc


def _require_pose(graph: FactorGraph, key: int, lineno: int) -> int:
    if not graph.has_variable(key) or graph.variable_type(key).name != POSE2.name:
        raise ParseError(f"line {lineno}: reference to undeclared pose {key}")
    return key


def load_heading_file(path: str) -> HeadingRecords:
    """
    Read HD2 heading records.

    Each record is ``HD2 node_index heading sigma``. Only the sigma of the
    record with index 1 is kept; it is shared by every heading prior.
    Lines with other tags are skipped.

    Raises:
        ParseError: If the file cannot be opened or an HD2 record is
            malformed.
    """
    headings = HeadingRecords()
    for lineno, tokens in _read_records(path):
        if tokens[0] != HEADING_TAG:
            continue
        _check_length(tokens, HEADING_TAG, lineno)
        index = _parse_int(tokens[1], lineno)
        angle, sigma = _parse_floats(tokens[2:4], lineno)
        headings.angles[index] = float(angle)
        if index == 1:
            headings.sigma = float(sigma)
        headings.count = max(headings.count, index)
    return headings


def format_value(value: float) -> str:
    """Full-precision text form of a number."""
    return format(float(value), ".17g")


def format_graph_records(
    graph: FactorGraph,
    values: Optional[Values] = None,
    headings: Optional[HeadingRecords] = None,
) -> List[str]:
    """
    Serialize a graph back to the text grammar.

    Vertices use ``values`` (default: the initial values). Odometry is
    written as EDGE2 with a diagonal TORO-layout covariance, bearing-range
    observations as BR, pose priors as PRIOR_SE2 and, when given, the
    headings as HD2. Orientation priors are represented by the HD2 records
    and are not written on their own.

    Raises:
        ValueError: For factors the grammar cannot express (Cartesian
            landmark observations, unknown factor types).
    """
    if values is None:
        values = graph.initial_values()

    lines = []
    for variable in graph.variables():
        value = values[variable.key]
        if variable.type.name == POSE2.name:
            if symbol_chr(variable.key):
                raise ValueError(f"Pose key {variable.key} cannot be written as a plain id")
            lines.append(" ".join(["VERTEX2", str(variable.key)] + [format_value(v) for v in value]))
        else:
            index = symbol_index(variable.key)
            lines.append(" ".join(["VERTEX_XY", str(index)] + [format_value(v) for v in value]))

    for factor in graph.factors():
        if isinstance(factor, OdometryPose2D):
            var = factor.noise_model.sigmas ** 2
            noise = [var[0], 0.0, var[1], var[2], 0.0, 0.0]
            fields = [str(factor.key_i), str(factor.key_j)]
            fields += [format_value(v) for v in factor.measured] + [format_value(v) for v in noise]
            lines.append("EDGE2 " + " ".join(fields))
        elif isinstance(factor, LandmarkObservation):
            if factor.model != "bearing_range":
                raise ValueError("Cartesian landmark observations have no record type")
            fields = [str(factor.pose_key), str(symbol_index(factor.landmark_key))]
            fields += [format_value(v) for v in factor.measured]
            fields += [format_value(v) for v in factor.noise_model.sigmas]
            lines.append("BR " + " ".join(fields))
        elif isinstance(factor, PriorPose2D):
            fields = [str(factor.key)] + [format_value(v) for v in factor.mean]
            fields += [format_value(v) for v in factor.noise_model.sigmas]
            lines.append("PRIOR_SE2 " + " ".join(fields))
        elif isinstance(factor, OrientationPrior2D):
            continue
        else:
            raise ValueError(f"Cannot serialize factor of type {type(factor).__name__}")

    if headings:
        sigma = headings.sigma if headings.sigma is not None else 0.0
        for index in sorted(headings.angles):
            lines.append(
                f"{HEADING_TAG} {index} {format_value(headings.angles[index])} {format_value(sigma)}"
            )
    return lines


def write_graph_file(
    path: str,
    graph: FactorGraph,
    values: Optional[Values] = None,
    headings: Optional[HeadingRecords] = None,
) -> None:
    """Write ``format_graph_records`` to a file, one record per line."""
    lines = format_graph_records(graph, values, headings)
    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")

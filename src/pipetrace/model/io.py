"""
Input/Output Manager (HDF5)
Handles saving and loading the ProjectState to .h5 files.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

import h5py
import numpy as np

from pipetrace.config import APP_VERSION, ATTRIBUTE_SIZE_LIMIT
from pipetrace.model.errors import ProjectFileError
from pipetrace.model.route import Calibration, RoutePoint
from pipetrace.model.state import ProjectMetadata, ProjectState

if TYPE_CHECKING:
    import numpy.typing as npt

# Get module logger
logger = logging.getLogger(__name__)


class IOManager:

    # ---- DOCUMENT (plain dict) ----
    @staticmethod
    def to_document(state: ProjectState) -> Dict[str, Any]:
        """The project in its persisted shape (JSON compatible)."""
        route = state.route.to_dict()
        return {
            "version": APP_VERSION,
            "projectName": state.project_name,
            "createdAt": state.created_at,
            "updatedAt": state.updated_at,
            "metadata": state.metadata.to_dict(),
            "calibration": route["calibration"],
            "points": route["points"],
        }

    @staticmethod
    def from_document(state: ProjectState, data: Dict[str, Any]) -> None:
        """
        Replace the state with the document contents.

        Everything is parsed before the state is touched, so a corrupted
        document leaves the open project as it was.
        """
        if not isinstance(data, dict) or not isinstance(data.get("points"), list):
            raise ProjectFileError("Project data is corrupted: 'points' list missing.")

        try:
            points = [RoutePoint.from_dict(p) for p in data["points"]]
            calibration = Calibration.from_dict(data.get("calibration"))
            metadata = ProjectMetadata.from_dict(data.get("metadata"))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProjectFileError(f"Project data is corrupted: invalid entry ({e!r}).") from e

        state.reset()
        state.project_name = str(data.get("projectName") or state.project_name)
        state.metadata = metadata
        state.created_at = data.get("createdAt") or state.created_at
        state.updated_at = data.get("updatedAt")
        state.route.load_points(points, calibration)

    # ---- HDF5 ----
    @staticmethod
    def save_project(
        state: ProjectState,
        filepath: str,
        positions: Optional[npt.NDArray[np.float64]] = None,
    ) -> None:
        """`positions` (reconstructed (N, 3) coordinates) is stored as an extra dataset when given."""
        logger.info(f"Saving project to: {filepath}")
        state.touch()
        try:
            with h5py.File(filepath, "w") as f:
                f.attrs["version"] = APP_VERSION
                f.attrs["project_name"] = state.project_name
                f.attrs["created_at"] = state.created_at
                f.attrs["updated_at"] = state.updated_at or ""

                # --- 1. SAVE METADATA ---
                grp_meta = f.create_group("metadata")
                for key, val in state.metadata.to_dict().items():
                    grp_meta.attrs[key] = val

                # --- 2. SAVE ROUTE ---
                grp_route = f.create_group("route")
                route = state.route.to_dict()
                IOManager._write_json(grp_route, "calibration", route["calibration"])
                IOManager._write_json(grp_route, "points", route["points"])

                # --- 3. SAVE RECONSTRUCTED POSITIONS ---
                # Convenience copy for external tools; never read back
                if positions is not None:
                    grp_route.create_dataset("positions", data=np.asarray(positions, dtype=np.float64))

            state.filepath = filepath
            logger.info(f"Project saved to: {filepath}")

        except Exception as e:
            logger.exception(f"Failed to save project: {e}")
            raise e

    @staticmethod
    def load_project(state: ProjectState, filepath: str) -> None:
        logger.info(f"Loading project from: {filepath}")
        if not h5py.is_hdf5(filepath):
            msg = f"File '{filepath}' is not a valid HDF5 file."
            logger.error(msg)
            raise ProjectFileError(msg)

        try:
            with h5py.File(filepath, "r") as f:
                if "route" not in f:
                    raise ProjectFileError(f"File '{filepath}' has no route group.")

                grp_route = f["route"]
                points = IOManager._read_json(grp_route, "points")
                calibration = IOManager._read_json(grp_route, "calibration")

                metadata = {}
                if "metadata" in f:
                    for key in f["metadata"].attrs.keys():
                        metadata[key] = IOManager._native(f["metadata"].attrs[key])

                document = {
                    "projectName": IOManager._native(f.attrs.get("project_name", "")),
                    "createdAt": IOManager._native(f.attrs.get("created_at", "")),
                    "updatedAt": IOManager._native(f.attrs.get("updated_at", "")) or None,
                    "metadata": metadata,
                    "calibration": calibration,
                    "points": points,
                }

            IOManager.from_document(state, document)
            state.filepath = filepath
            logger.info(f"Project loaded from: {filepath}")

        except Exception as e:
            logger.exception(f"Failed to load project: {e}")
            raise e

    # --- JSON HELPERS ---

    @staticmethod
    def _write_json(group: h5py.Group, name: str, payload: Any) -> None:
        """Small payloads go to an attribute, large ones to an opaque dataset."""
        text = json.dumps(payload, ensure_ascii=False)
        if len(text.encode("utf-8")) > ATTRIBUTE_SIZE_LIMIT:
            logger.info(f"'{name}' is large ({len(text)} chars), using dataset")
            group.create_dataset(name, data=np.void(text.encode("utf-8")))
        else:
            group.attrs[f"{name}_json"] = text

    @staticmethod
    def _read_json(group: h5py.Group, name: str) -> Optional[Any]:
        text = None
        if name in group:
            text = bytes(group[name][()]).decode("utf-8")
        elif f"{name}_json" in group.attrs:
            text = IOManager._native(group.attrs[f"{name}_json"])
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ProjectFileError(f"Corrupted '{name}' entry: {e}") from e

    @staticmethod
    def _native(value: Any) -> Any:
        # HDF5 often returns numpy types or bytes, convert to native python
        if isinstance(value, bytes):
            return value.decode("utf-8")
        if hasattr(value, "item"):
            return value.item()
        return value


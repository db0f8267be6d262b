import json
import os
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dispatch.errors import ConfigurationError
from dispatch.resolver import FUNCTION_KEY, KWARGS_KEY, Directive

SCF_STATUS_PATH = "self_consistent_field.json"
TIMINGS_PATH = "timings.json"
POSTSCF_EXTENSION = ".hdf5"
SUPPORTED_CONFIG_FORMATS = ".json/.yaml"

JOB_CONFIG_EXAMPLES = {
    "periodic_system": (
        "\"periodic_system\": {\"atoms\": [{\"symbol\": \"Si\", \"position\": [0, 0, 0], "
        "\"pseudopotential\": \"gth-pade\"}], \"bounding_box\": [[0, 5.13, 5.13], "
        "[5.13, 0, 5.13], [5.13, 5.13, 0]]}"
    ),
    "model_kwargs": "\"model_kwargs\": {\"xc\": \"pbe\", \"temperature\": 0.001}",
    "basis_kwargs": "\"basis_kwargs\": {\"Ecut\": 20, \"basis\": \"gth-szv\", \"kgrid\": [2, 2, 2]}",
    "scf": (
        "\"scf\": {\"$function\": \"self_consistent_field\", \"$kwargs\": {\"tol\": 1e-8}, "
        "\"checkpointfile\": \"scfres.h5\", \"maxtime\": 3600}"
    ),
    "postscf": (
        "\"postscf\": [{\"$function\": \"compute_bands\", "
        "\"$kwargs\": {\"kpath\": [[0, 0, 0], [0.5, 0, 0]]}}]"
    ),
}


class ConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class AtomConfig(ConfigModel):
    symbol: str
    position: list[float] = Field(min_length=3, max_length=3)
    pseudopotential: str
    pseudopotential_kwargs: dict[str, Any] = Field(default_factory=dict)
    magnetic_moment: float = 0.0


class PeriodicSystemConfig(ConfigModel):
    atoms: list[AtomConfig] = Field(min_length=1)
    bounding_box: list[list[float]] = Field(min_length=3, max_length=3)


class ScfConfig(ConfigModel):
    function: str = Field(alias=FUNCTION_KEY)
    kwargs: dict[str, Any] = Field(default_factory=dict, alias=KWARGS_KEY)
    checkpointfile: str = Field(min_length=1)
    maxtime: float | None = Field(default=None, ge=0)
    save_psi: bool = Field(default=False, alias="save_ψ")


class PostScfCall(ConfigModel):
    function: str = Field(alias=FUNCTION_KEY, min_length=1)
    kwargs: dict[str, Any] = Field(default_factory=dict, alias=KWARGS_KEY)


class JobConfig(ConfigModel):
    model_config = ConfigDict(
        extra="allow", frozen=True, populate_by_name=True, protected_namespaces=()
    )

    periodic_system: PeriodicSystemConfig
    model_kwargs: dict[str, Any]
    basis_kwargs: dict[str, Any]
    scf: ScfConfig
    postscf: list[PostScfCall] | None = None

    def postscf_directives(self) -> list[Directive]:
        return [
            Directive(function=call.function, kwargs=call.kwargs, section=f"postscf[{index}]")
            for index, call in enumerate(self.postscf or [])
        ]


def _format_location(loc) -> str:
    parts = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(("." if parts else "") + str(item))
    return "".join(parts)


def _schema_example_for_path(path):
    root = path.split(".")[0].split("[")[0] if path else ""
    return JOB_CONFIG_EXAMPLES.get(root, "See examples/silicon.json for a complete example.")


def validate_job_config(config: Any) -> JobConfig:
    if not isinstance(config, Mapping):
        raise ConfigurationError("Config must be an object/mapping.")
    try:
        return JobConfig.model_validate(dict(config))
    except ValidationError as exc:
        error = exc.errors()[0]
        path = _format_location(error.get("loc", ()))
        message = error.get("msg", "invalid value")
        raise ConfigurationError(
            f"Config '{path}': {message}. Example: {_schema_example_for_path(path)}",
            key=path or None,
        ) from exc


def _format_parse_error_prefix(path):
    return f"Failed to parse input file '{path}' (supported: {SUPPORTED_CONFIG_FORMATS})"


def _format_json_decode_error(path, error):
    location = f"line {error.lineno} column {error.colno}"
    message = error.msg
    if message == "Extra data":
        remainder = ""
        if error.doc and error.pos is not None:
            remainder = error.doc[error.pos : error.pos + 120]
        preview = repr(remainder) if remainder else "(empty)"
        message = (
            "Extra data after the first JSON value. "
            f"remainder preview: {preview}. "
            "More than one JSON object detected in the file."
        )
    return f"{_format_parse_error_prefix(path)} ({location}): {message}"


def parse_config_contents(path, raw_text):
    extension = os.path.splitext(str(path))[1].lower()
    if extension in (".yaml", ".yml"):
        try:
            return yaml.safe_load(raw_text)
        except yaml.YAMLError as error:
            raise ConfigurationError(f"{_format_parse_error_prefix(path)}: {error}") from error
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as error:
        raise ConfigurationError(_format_json_decode_error(path, error)) from error


def load_job_config(config_path) -> JobConfig:
    if not os.path.isfile(config_path):
        raise ConfigurationError(f"Input file not found: '{config_path}'.")
    with open(config_path, "r", encoding="utf-8") as config_file:
        raw_config = config_file.read()
    return validate_job_config(parse_config_contents(config_path, raw_config))

"""Record schema, compiled once at import time.

The schema is a fixed table of messages and fields covering the branches of the
``wandb_internal.Record`` tagged union that this package reads, plus enough of the
others to recognize them. It is turned into a ``FileDescriptorProto`` and
registered into a private descriptor pool, so decoding is a plain
``Record.FromString`` with no global mutable state.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "wandb_internal"
FILE_NAME = "mcp_wandb_run_server/wandb_internal_subset.proto"

_FDP = descriptor_pb2.FieldDescriptorProto

_SCALARS = {
    "string": _FDP.TYPE_STRING,
    "bool": _FDP.TYPE_BOOL,
    "double": _FDP.TYPE_DOUBLE,
    "int32": _FDP.TYPE_INT32,
    "int64": _FDP.TYPE_INT64,
    "uint32": _FDP.TYPE_UINT32,
    "uint64": _FDP.TYPE_UINT64,
}

# (name, number, type, repeated)
Field = tuple[str, int, str, bool]

_INFO: Field = ("info", 200, "RecordInfo", False)

SCHEMA: dict[str, tuple[Field, ...]] = {
    "RecordInfo": (("stream_id", 1, "string", False), ("tracelog_id", 100, "string", False)),
    "Timestamp": (("seconds", 1, "int64", False), ("nanos", 2, "int32", False)),
    "HistoryStep": (("num", 1, "int64", False),),
    "HistoryItem": (
        ("key", 1, "string", False),
        ("nested_key", 2, "string", True),
        ("value_json", 16, "string", False),
    ),
    "HistoryRecord": (
        ("item", 1, "HistoryItem", True),
        ("step", 2, "HistoryStep", False),
        _INFO,
    ),
    "ConfigItem": (
        ("key", 1, "string", False),
        ("nested_key", 2, "string", True),
        ("value_json", 16, "string", False),
    ),
    "ConfigRecord": (
        ("update", 1, "ConfigItem", True),
        ("remove", 2, "ConfigItem", True),
        _INFO,
    ),
    "SummaryItem": (
        ("key", 1, "string", False),
        ("nested_key", 2, "string", True),
        ("value_json", 16, "string", False),
    ),
    "SummaryRecord": (
        ("update", 1, "SummaryItem", True),
        ("remove", 2, "SummaryItem", True),
        _INFO,
    ),
    "StatsItem": (("key", 1, "string", False), ("value_json", 16, "string", False)),
    "StatsRecord": (
        ("stats_type", 1, "int32", False),
        ("timestamp", 2, "Timestamp", False),
        ("item", 3, "StatsItem", True),
        _INFO,
    ),
    "GitRepoRecord": (("remote_url", 1, "string", False), ("commit", 2, "string", False)),
    "SettingsItem": (("key", 1, "string", False), ("value_json", 16, "string", False)),
    "SettingsRecord": (("item", 1, "SettingsItem", True), _INFO),
    "TelemetryRecord": (
        ("import_init_module", 1, "string", False),
        ("python_version", 8, "string", False),
        ("cli_version", 9, "string", False),
        _INFO,
    ),
    "BranchPoint": (
        ("run", 1, "string", False),
        ("value", 2, "double", False),
        ("metric", 3, "string", False),
    ),
    "RunRecord": (
        ("run_id", 1, "string", False),
        ("entity", 2, "string", False),
        ("project", 3, "string", False),
        ("config", 4, "ConfigRecord", False),
        ("summary", 5, "SummaryRecord", False),
        ("run_group", 6, "string", False),
        ("job_type", 7, "string", False),
        ("display_name", 8, "string", False),
        ("notes", 9, "string", False),
        ("tags", 10, "string", True),
        ("settings", 11, "SettingsRecord", False),
        ("sweep_id", 12, "string", False),
        ("host", 13, "string", False),
        ("starting_step", 14, "int64", False),
        ("storage_id", 16, "string", False),
        ("start_time", 17, "Timestamp", False),
        ("resumed", 18, "bool", False),
        ("telemetry", 19, "TelemetryRecord", False),
        ("runtime", 20, "int32", False),
        ("git", 21, "GitRepoRecord", False),
        ("forked", 22, "bool", False),
        ("branch_point", 23, "BranchPoint", False),
        _INFO,
    ),
    "OutputRecord": (
        ("output_type", 1, "int32", False),
        ("timestamp", 2, "Timestamp", False),
        ("line", 3, "string", False),
        _INFO,
    ),
    "OutputRawRecord": (
        ("output_type", 1, "int32", False),
        ("timestamp", 2, "Timestamp", False),
        ("line", 3, "string", False),
        _INFO,
    ),
    "FilesItem": (
        ("path", 1, "string", False),
        ("policy", 2, "int32", False),
        ("type", 3, "int32", False),
    ),
    "FilesRecord": (("files", 1, "FilesItem", True), _INFO),
    "ArtifactRecord": (
        ("run_id", 1, "string", False),
        ("project", 2, "string", False),
        ("entity", 3, "string", False),
        ("type", 4, "string", False),
        ("name", 5, "string", False),
        _INFO,
    ),
    "TBRecord": (
        ("log_dir", 1, "string", False),
        ("save", 2, "bool", False),
        ("root_dir", 3, "string", False),
        _INFO,
    ),
    "AlertRecord": (
        ("title", 1, "string", False),
        ("text", 2, "string", False),
        ("level", 3, "string", False),
        ("wait_duration", 4, "int64", False),
        _INFO,
    ),
    "MetricRecord": (
        ("name", 1, "string", False),
        ("glob_name", 2, "string", False),
        ("step_metric", 4, "string", False),
        ("step_metric_index", 5, "int32", False),
        ("goal", 8, "int32", False),
        ("expanded_from_glob", 10, "bool", False),
        _INFO,
    ),
    "MemoryInfo": (("total", 1, "uint64", False),),
    "CpuInfo": (("count", 1, "uint32", False), ("count_logical", 2, "uint32", False)),
    "GpuNvidiaInfo": (
        ("name", 1, "string", False),
        ("memory_total", 2, "uint64", False),
        ("cuda_cores", 3, "uint32", False),
        ("architecture", 4, "string", False),
        ("uuid", 5, "string", False),
    ),
    "EnvironmentRecord": (
        ("os", 1, "string", False),
        ("python", 2, "string", False),
        ("started_at", 3, "Timestamp", False),
        ("docker", 4, "string", False),
        ("args", 5, "string", True),
        ("program", 6, "string", False),
        ("code_path", 7, "string", False),
        ("code_path_local", 8, "string", False),
        ("git", 9, "GitRepoRecord", False),
        ("email", 10, "string", False),
        ("root", 11, "string", False),
        ("host", 12, "string", False),
        ("username", 13, "string", False),
        ("executable", 14, "string", False),
        ("colab", 15, "string", False),
        ("cpu_count", 16, "uint32", False),
        ("cpu_count_logical", 17, "uint32", False),
        ("gpu_type", 18, "string", False),
        ("gpu_count", 19, "uint32", False),
        ("memory", 21, "MemoryInfo", False),
        ("cpu", 22, "CpuInfo", False),
        ("gpu_nvidia", 24, "GpuNvidiaInfo", True),
        ("cuda_version", 25, "string", False),
        ("writer_id", 199, "string", False),
        _INFO,
    ),
    "UseArtifactRecord": (
        ("id", 1, "string", False),
        ("type", 2, "string", False),
        ("name", 3, "string", False),
        _INFO,
    ),
    "RunExitRecord": (("exit_code", 1, "int32", False), ("runtime", 2, "int32", False), _INFO),
    "RunPreemptingRecord": (_INFO,),
    "FinalRecord": (_INFO,),
    "FooterRecord": (_INFO,),
    "VersionInfo": (("producer", 1, "string", False), ("min_consumer", 2, "string", False)),
    "HeaderRecord": (("version_info", 1, "VersionInfo", False), _INFO),
    "Request": (_INFO,),
    "Control": (
        ("req_resp", 1, "bool", False),
        ("local", 2, "bool", False),
        ("relay_id", 3, "string", False),
        ("mailbox_slot", 4, "string", False),
        ("always_send", 5, "bool", False),
        ("flow_control", 6, "bool", False),
        ("end_offset", 7, "int64", False),
        ("connection_id", 8, "string", False),
    ),
    "Record": (
        ("num", 1, "int64", False),
        ("history", 2, "HistoryRecord", False),
        ("summary", 3, "SummaryRecord", False),
        ("output", 4, "OutputRecord", False),
        ("config", 5, "ConfigRecord", False),
        ("files", 6, "FilesRecord", False),
        ("stats", 7, "StatsRecord", False),
        ("artifact", 8, "ArtifactRecord", False),
        ("tbrecord", 9, "TBRecord", False),
        ("alert", 10, "AlertRecord", False),
        ("telemetry", 11, "TelemetryRecord", False),
        ("metric", 12, "MetricRecord", False),
        ("output_raw", 13, "OutputRawRecord", False),
        ("control", 16, "Control", False),
        ("run", 17, "RunRecord", False),
        ("exit", 18, "RunExitRecord", False),
        ("uuid", 19, "string", False),
        ("final", 20, "FinalRecord", False),
        ("header", 21, "HeaderRecord", False),
        ("footer", 22, "FooterRecord", False),
        ("preempting", 23, "RunPreemptingRecord", False),
        ("use_artifact", 25, "UseArtifactRecord", False),
        ("environment", 26, "EnvironmentRecord", False),
        ("request", 100, "Request", False),
        _INFO,
    ),
}

# Members of Record's ``record_type`` oneof.
RECORD_TYPE_FIELDS: frozenset[str] = frozenset(
    {
        "history",
        "summary",
        "output",
        "config",
        "files",
        "stats",
        "artifact",
        "tbrecord",
        "alert",
        "telemetry",
        "metric",
        "output_raw",
        "run",
        "exit",
        "final",
        "header",
        "footer",
        "preempting",
        "use_artifact",
        "environment",
        "request",
    }
)


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(name=FILE_NAME, package=PACKAGE, syntax="proto3")
    for msg_name, fields in SCHEMA.items():
        msg = fdp.message_type.add(name=msg_name)
        if msg_name == "Record":
            msg.oneof_decl.add(name="record_type")
        for field_name, number, type_name, repeated in fields:
            f = msg.field.add(
                name=field_name,
                number=number,
                label=_FDP.LABEL_REPEATED if repeated else _FDP.LABEL_OPTIONAL,
            )
            if type_name in _SCALARS:
                f.type = _SCALARS[type_name]
            else:
                f.type = _FDP.TYPE_MESSAGE
                f.type_name = f".{PACKAGE}.{type_name}"
            if msg_name == "Record" and field_name in RECORD_TYPE_FIELDS:
                f.oneof_index = 0
    return fdp


def _build_message_classes() -> dict[str, type]:
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(_build_file_descriptor().SerializeToString())
    return {
        name: message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))
        for name in SCHEMA
    }


MESSAGES: dict[str, type] = _build_message_classes()
Record = MESSAGES["Record"]

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class DependencyDTO(BaseModel):
    name: str
    rename: Optional[str] = None
    kind: Optional[str] = None
    target: Optional[str] = None
    optional: bool = False


class TargetDTO(BaseModel):
    name: str
    kind: List[str]
    crate_types: List[str] = []
    src_path: str


class PackageDTO(BaseModel):
    id: str
    name: str
    version: str = ""
    manifest_path: str
    dependencies: List[DependencyDTO] = []
    targets: List[TargetDTO] = []
    links: Optional[str] = None


class DepKindInfoDTO(BaseModel):
    kind: Optional[str] = None
    target: Optional[str] = None


class NodeDepDTO(BaseModel):
    name: str
    pkg: str
    dep_kinds: List[DepKindInfoDTO] = []


class NodeDTO(BaseModel):
    id: str
    deps: List[NodeDepDTO] = []


class ResolveDTO(BaseModel):
    nodes: List[NodeDTO]
    root: Optional[str] = None


class MetadataDTO(BaseModel):
    packages: List[PackageDTO]
    workspace_members: List[str]
    workspace_default_members: Optional[List[str]] = None
    resolve: Optional[ResolveDTO] = None
    workspace_root: str = ""
    target_directory: str = ""


class ProfileDTO(BaseModel):
    test: bool = False


class ArtifactMessageDTO(BaseModel):
    reason: str
    package_id: str
    target: TargetDTO
    profile: ProfileDTO = Field(default_factory=ProfileDTO)
    fresh: bool = False


class DiagnosticCodeDTO(BaseModel):
    code: str
    explanation: Optional[str] = None


class DiagnosticDTO(BaseModel):
    message: str
    code: Optional[DiagnosticCodeDTO] = None
    level: str = ""
    rendered: Optional[str] = None


class CompilerMessageDTO(BaseModel):
    reason: str
    package_id: str
    target: TargetDTO
    message: DiagnosticDTO


class BuildScriptExecutedDTO(BaseModel):
    reason: str
    package_id: str
    out_dir: str


class BuildFinishedDTO(BaseModel):
    reason: str
    success: bool = True


class UnusedExternsDTO(BaseModel):
    lint_level: str
    unused_extern_names: List[str]

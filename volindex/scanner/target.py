"""What a scan run points at: a mounted volume or a manual root."""

from dataclasses import dataclass

from volindex.database.models import ManualRoot, TargetType, Volume


@dataclass
class ScanTarget:
    target_type: TargetType
    target_id: str
    root_path: str
    name: str
    volume: Volume | None = None
    manual_root: ManualRoot | None = None

    @classmethod
    def for_volume(cls, volume: Volume, mount_point: str | None = None) -> "ScanTarget":
        root_path = mount_point or volume.mount_point_last
        if not root_path:
            raise ValueError(f"Volume {volume.volume_uuid} has no known mount point")
        return cls(
            target_type=TargetType.VOLUME,
            target_id=volume.volume_uuid,
            root_path=root_path,
            name=volume.volume_name or volume.volume_uuid,
            volume=volume,
        )

    @classmethod
    def for_manual_root(cls, root: ManualRoot) -> "ScanTarget":
        return cls(
            target_type=TargetType.MANUAL_ROOT,
            target_id=root.target_id,
            root_path=root.path,
            name=root.display_name,
            manual_root=root,
        )

    @property
    def is_volume(self) -> bool:
        return self.target_type is TargetType.VOLUME

    @property
    def auto_purge(self) -> bool:
        return bool(self.volume and self.volume.auto_purge)

    def describe(self) -> dict:
        payload = {
            "targetType": self.target_type.value,
            "rootPath": self.root_path,
            "name": self.name,
        }
        if self.is_volume:
            payload["volume_uuid"] = self.target_id
        else:
            payload["rootId"] = self.manual_root.id if self.manual_root else None
        return payload

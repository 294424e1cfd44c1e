"""Attachment collection and the submission payload.

Photo, signature and file values are opaque payload references (encoded blobs
or upload descriptors). The engine never looks inside them; at submit time it
only sorts them into the attachment buckets the persistence collaborator
expects.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from formsession.schema import FormField, FormSection, SectionInstance
from formsession.types import FieldType, FormValues, SubmissionStatus

FILE_DESCRIPTOR_KEYS = ("name", "type", "size")


@dataclass
class FormAttachments:
    """Attachments gathered from a value bag.

    Attributes:
        photos: ``{"field_code", "data"}`` records, one per photo
        signatures: field_code -> encoded signature
        files: File descriptors (must carry name, type and size)
    """
    photos: List[Dict[str, Any]] = field(default_factory=list)
    signatures: Dict[str, str] = field(default_factory=dict)
    files: List[Dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.photos or self.signatures or self.files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photos": list(self.photos),
            "signatures": dict(self.signatures),
            "files": list(self.files),
        }


def is_file_descriptor(value: Any) -> bool:
    """True for dicts describing an uploaded file."""
    return isinstance(value, Mapping) and all(key in value for key in FILE_DESCRIPTOR_KEYS)


def collect_attachments(
    fields: Iterable[FormField],
    values: FormValues,
    instance_id: Optional[str] = None,
    attachments: Optional[FormAttachments] = None,
) -> FormAttachments:
    """Sort attachment-typed values into photo, signature and file buckets.

    Empty values are skipped. Photos may be a single encoded string or a list
    of them; files must be lists of descriptors, anything else is ignored.

    Args:
        fields: Fields whose values may hold attachments
        values: Value bag keyed by field_code
        instance_id: Repeatable section instance the values belong to; its
            records carry ``instance_id`` and its signatures are keyed
            ``instance_id.field_code``
        attachments: Buckets to add to, a new set when omitted
    """
    if attachments is None:
        attachments = FormAttachments()
    for form_field in fields:
        value = values.get(form_field.field_code)
        if not value:
            continue
        origin: Dict[str, Any] = {"field_code": form_field.field_code}
        if instance_id is not None:
            origin["instance_id"] = instance_id

        if form_field.field_type == FieldType.SIGNATURE and isinstance(value, str):
            key = form_field.field_code if instance_id is None else f"{instance_id}.{form_field.field_code}"
            attachments.signatures[key] = value
        elif form_field.field_type == FieldType.PHOTO:
            if isinstance(value, list):
                attachments.photos.extend(dict(origin, data=data) for data in value)
            elif isinstance(value, str):
                attachments.photos.append(dict(origin, data=value))
        elif form_field.field_type == FieldType.FILE and isinstance(value, list):
            attachments.files.extend(dict(item, **origin) for item in value if is_file_descriptor(item))
    return attachments


def collect_instance_attachments(
    sections: Iterable[FormSection],
    instances: Mapping[str, Iterable[SectionInstance]],
    attachments: Optional[FormAttachments] = None,
) -> FormAttachments:
    """Add the attachments held inside repeatable section instances."""
    if attachments is None:
        attachments = FormAttachments()
    for section in sections:
        if not section.is_repeatable:
            continue
        for instance in instances.get(section.id, ()):
            collect_attachments(section.fields, instance.values, instance.instance_id, attachments)
    return attachments


@dataclass
class SubmissionPayload:
    """Everything handed to the persistence collaborator on submit.

    Attributes:
        form_template_id: Template the values were collected for
        form_data: Snapshot of the value bag
        attachments: Attachment references collected from form_data
        section_instances: Repeatable section instances by section id
        status: Draft or submitted
        gps_coordinates: Optional {"lat", "lng", "accuracy"} captured by the device
        jobsite_id: Optional jobsite context
    """
    form_template_id: str
    form_data: FormValues
    attachments: FormAttachments
    section_instances: Dict[str, List[SectionInstance]] = field(default_factory=dict)
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    gps_coordinates: Optional[Dict[str, float]] = None
    jobsite_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "form_template_id": self.form_template_id,
            "form_data": dict(self.form_data),
            "attachments": self.attachments.to_dict(),
            "section_instances": {
                section_id: [i.to_dict() for i in instances]
                for section_id, instances in self.section_instances.items()
            },
            "status": self.status.value,
        }
        if self.gps_coordinates is not None:
            result["gps_coordinates"] = dict(self.gps_coordinates)
        if self.jobsite_id is not None:
            result["jobsite_id"] = self.jobsite_id
        return result


__all__ = [
    "FormAttachments",
    "SubmissionPayload",
    "is_file_descriptor",
    "collect_attachments",
    "collect_instance_attachments",
]

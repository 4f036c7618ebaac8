"""Normalization package initialization."""

from .envelope import body_to_dict, build_record, unwrap_objects

__all__ = ['body_to_dict', 'build_record', 'unwrap_objects']

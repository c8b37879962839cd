"""
Protobuf messages of the update_engine payload manifest.

Only the fields payloadsign reads or rewrites are declared. Everything else
survives a parse/serialize cycle as unknown fields, so manifests produced by
newer generators are re-emitted unchanged.
"""

from google.protobuf import descriptor_pb2
from google.protobuf import descriptor_pool
from google.protobuf import message_factory

PACKAGE = 'chromeos_update_engine'

_TYPES = {
    'bool': descriptor_pb2.FieldDescriptorProto.TYPE_BOOL,
    'bytes': descriptor_pb2.FieldDescriptorProto.TYPE_BYTES,
    'fixed32': descriptor_pb2.FieldDescriptorProto.TYPE_FIXED32,
    'int64': descriptor_pb2.FieldDescriptorProto.TYPE_INT64,
    'string': descriptor_pb2.FieldDescriptorProto.TYPE_STRING,
    'uint32': descriptor_pb2.FieldDescriptorProto.TYPE_UINT32,
    'uint64': descriptor_pb2.FieldDescriptorProto.TYPE_UINT64,
}

_OPTIONAL = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL
_REPEATED = descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED

# (name, number, repeated, type); a type that is not a scalar names a message.
# InstallOperation.type is an enum on the wire; it is declared as uint32 so
# unknown operation types never end up in the unknown field set.
_MESSAGES = {
    'Extent': [
        ('start_block', 1, False, 'uint64'),
        ('num_blocks', 2, False, 'uint64'),
    ],
    'Signature': [
        ('version', 1, False, 'uint32'),
        ('data', 2, False, 'bytes'),
        ('unpadded_signature_size', 3, False, 'fixed32'),
    ],
    'Signatures': [
        ('signatures', 1, True, 'Signature'),
    ],
    'PartitionInfo': [
        ('size', 1, False, 'uint64'),
        ('hash', 2, False, 'bytes'),
    ],
    'InstallOperation': [
        ('type', 1, False, 'uint32'),
        ('data_offset', 2, False, 'uint64'),
        ('data_length', 3, False, 'uint64'),
        ('src_extents', 4, True, 'Extent'),
        ('src_length', 5, False, 'uint64'),
        ('dst_extents', 6, True, 'Extent'),
        ('dst_length', 7, False, 'uint64'),
        ('data_sha256_hash', 8, False, 'bytes'),
        ('src_sha256_hash', 9, False, 'bytes'),
    ],
    'PartitionUpdate': [
        ('partition_name', 1, False, 'string'),
        ('run_postinstall', 2, False, 'bool'),
        ('postinstall_path', 3, False, 'string'),
        ('filesystem_type', 4, False, 'string'),
        ('new_partition_signature', 5, True, 'Signature'),
        ('old_partition_info', 6, False, 'PartitionInfo'),
        ('new_partition_info', 7, False, 'PartitionInfo'),
        ('operations', 8, True, 'InstallOperation'),
        ('postinstall_optional', 9, False, 'bool'),
        ('hash_tree_data_extent', 10, False, 'Extent'),
        ('hash_tree_extent', 11, False, 'Extent'),
        ('hash_tree_algorithm', 12, False, 'string'),
        ('hash_tree_salt', 13, False, 'bytes'),
        ('fec_data_extent', 14, False, 'Extent'),
        ('fec_extent', 15, False, 'Extent'),
        ('fec_roots', 16, False, 'uint32'),
        ('version', 17, False, 'string'),
        ('estimate_cow_size', 19, False, 'uint64'),
    ],
    'DeltaArchiveManifest': [
        ('block_size', 3, False, 'uint32'),
        ('signatures_offset', 4, False, 'uint64'),
        ('signatures_size', 5, False, 'uint64'),
        ('minor_version', 12, False, 'uint32'),
        ('partitions', 13, True, 'PartitionUpdate'),
        ('max_timestamp', 14, False, 'int64'),
        ('partial_update', 16, False, 'bool'),
        ('security_patch_level', 18, False, 'string'),
    ],
}


def _build_file():
    file_proto = descriptor_pb2.FileDescriptorProto(
        name='update_metadata.proto',
        package=PACKAGE,
        syntax='proto2',
    )
    for message_name, fields in _MESSAGES.items():
        message = file_proto.message_type.add(name=message_name)
        for name, number, repeated, kind in fields:
            field = message.field.add(
                name=name,
                number=number,
                label=_REPEATED if repeated else _OPTIONAL,
            )
            if kind in _TYPES:
                field.type = _TYPES[kind]
            else:
                field.type = descriptor_pb2.FieldDescriptorProto.TYPE_MESSAGE
                field.type_name = f'.{PACKAGE}.{kind}'
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name):
    return message_factory.GetMessageClass(
        _pool.FindMessageTypeByName(f'{PACKAGE}.{name}'))


Extent = _message_class('Extent')
Signature = _message_class('Signature')
Signatures = _message_class('Signatures')
PartitionInfo = _message_class('PartitionInfo')
InstallOperation = _message_class('InstallOperation')
PartitionUpdate = _message_class('PartitionUpdate')
DeltaArchiveManifest = _message_class('DeltaArchiveManifest')

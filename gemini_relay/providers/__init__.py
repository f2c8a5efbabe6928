from .chunk_parser import StreamFragment, decode_fragment, parse_stream_fragment, strip_data_prefix
from .endpoint_resolver import EndpointResolver, ProviderEndpoint
from .gemini import GeminiProvider, extract_candidate_text
from .gemini_payload import PayloadError, build_gemini_contents, build_gemini_payload

__all__ = [
    'StreamFragment',
    'decode_fragment',
    'parse_stream_fragment',
    'strip_data_prefix',
    'EndpointResolver',
    'ProviderEndpoint',
    'GeminiProvider',
    'extract_candidate_text',
    'PayloadError',
    'build_gemini_contents',
    'build_gemini_payload',
]

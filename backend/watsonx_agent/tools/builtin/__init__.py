from .final_response_tool import format_final_json_response, serialize_final_payload

__all__ = ["format_final_json_response", "serialize_final_payload"]

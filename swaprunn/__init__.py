"""SwapRunn: dealership delivery marketplace on Streamlit and Supabase."""

__version__ = "0.4.0"

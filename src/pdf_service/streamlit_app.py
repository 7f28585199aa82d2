import os
import time

import requests
import streamlit as st

API_BASE = os.getenv("PDF_SERVICE_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("PDF_SERVICE_UI_TIMEOUT", "600"))


def request_conversion(url: str, *, api_base: str = API_BASE, timeout: float = REQUEST_TIMEOUT) -> tuple[bool, str]:
    """Ask the service to convert `url`; returns (ok, link-or-error-text)."""
    try:
        resp = requests.post(f"{api_base}/", json={"url": url}, timeout=timeout)
    except requests.RequestException as e:
        return False, f"Failed to connect to API: {e}"
    if resp.status_code == 200:
        return True, resp.text.strip()
    if resp.status_code == 503:
        retry = resp.headers.get("Retry-After")
        hint = f" (retry in {retry}s)" if retry else ""
        return False, f"{resp.status_code} {resp.text}{hint}"
    return False, f"{resp.status_code} {resp.text}"


def _reset_state() -> None:
    for key in ["link", "error", "elapsed"]:
        if key in st.session_state:
            del st.session_state[key]


def main() -> None:
    st.set_page_config(page_title="PDF Conversion Service", page_icon="📄", layout="centered")
    st.title("📄 PDF Conversion Service")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    url = st.text_input("Document URL", placeholder="https://example.com/report.docx")

    if url and st.button("Convert to PDF", type="primary"):
        _reset_state()
        started = time.monotonic()
        with st.spinner("Downloading and converting..."):
            ok, text = request_conversion(url)
        st.session_state["elapsed"] = time.monotonic() - started
        if ok:
            st.session_state["link"] = text
        else:
            st.session_state["error"] = text

    if link := st.session_state.get("link"):
        st.success(f"Conversion complete in {st.session_state.get('elapsed', 0):.1f}s")
        st.link_button("Download PDF", link)
        with st.expander("Signed link"):
            st.code(link, language=None)

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()

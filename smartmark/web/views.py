from smartmark.services.session_store import SessionStore

VIEW_LOADING = "loading"
VIEW_SIGNED_OUT = "signed_out"
VIEW_WORKSPACE = "workspace"

VIEW_TEMPLATES = {
    VIEW_LOADING: "loading.html",
    VIEW_SIGNED_OUT: "signin.html",
    VIEW_WORKSPACE: "workspace.html",
}


def select_view(store: SessionStore) -> str:
    if store.loading:
        return VIEW_LOADING
    if not store.is_authenticated:
        return VIEW_SIGNED_OUT
    return VIEW_WORKSPACE

from stockterm.app import main

main()
